"""Configuration dataclasses for a generation run."""
from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .config import Config, deep_merge
from .errors import ConfigError
from .models import SuiteLimits, TaskDependency

__all__ = [
    "HistorySettings",
    "EstimatorSettings",
    "SplitSettings",
    "GenerateSettings",
    "FuzzerSettings",
    "GeneratorSettings",
    "DEFAULTS",
]


DEFAULTS: Dict[str, Any] = {
    "history": {
        "base_url": None,
        "project": "mongodb-mongo-master",
        "lookback_days": 14,
        "timeout_secs": 30.0,
        "max_workers": 8,
        "deadline_secs": 120.0,
        "api_user": None,
        "api_key": None,
        "history_file": None,
    },
    "estimator": {
        "sample_count": 2,
        "include_failed": False,
        "default_runtime_secs": 60.0,
        "min_cold_start_secs": 1.0,
    },
    "split": {
        "max_sub_suites": 5,
        "max_runtime_secs": None,
        "max_tests_per_sub_suite": None,
    },
    "generate": {
        "build_variant": None,
        "distro": None,
        "large_distro_name": None,
        "use_large_distro": False,
        "create_misc_suite": False,
        "generator_task_name": "taskgen",
        "generator_tasks": [],
        "config_location": None,
        "resmoke_args": "",
        "resmoke_jobs_max": None,
        "require_multiversion_setup": False,
        "depends_on": [{"name": "archive_dist_test_debug"}],
        "task_name_template": None,
        "output_format": "json",
        "output_path": None,
        "suite_config_dir": None,
        "test_root": ".",
    },
    "fuzzers": [],
    "logger": {
        "level": "INFO",
        "namespace": "taskgen",
        "sinks": [{"type": "console", "stream": "stderr"}],
    },
    "progress": True,
}


def _positive(value: Any, name: str, typ: type) -> Any:
    if value is None:
        return None
    try:
        coerced = typ(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ConfigError(f"{name} must be {typ.__name__} (got {value!r})") from exc
    if not math.isfinite(coerced):
        raise ConfigError(f"{name} must be finite (got {value!r})")
    if coerced <= 0:
        raise ConfigError(f"{name} must be positive (got {value!r})")
    return coerced


def _dependencies(raw: Any, name: str) -> Tuple[TaskDependency, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ConfigError(f"{name} must be a list")
    deps = []
    for entry in raw:
        if isinstance(entry, str):
            deps.append(TaskDependency(name=entry))
        elif isinstance(entry, Mapping) and entry.get("name"):
            variant = entry.get("variant")
            deps.append(TaskDependency(name=str(entry["name"]), variant=str(variant) if variant else None))
        else:
            raise ConfigError(f"{name} entries must be task names or mappings with 'name'")
    return tuple(deps)


@dataclass(frozen=True)
class HistorySettings:
    base_url: Optional[str]
    project: str
    lookback_days: int
    timeout_secs: float
    max_workers: int
    deadline_secs: float
    api_user: Optional[str] = field(default=None, repr=False)
    api_key: Optional[str] = field(default=None, repr=False)
    history_file: Optional[Path] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HistorySettings":
        history_file = data.get("history_file")
        return cls(
            base_url=str(data["base_url"]).rstrip("/") if data.get("base_url") else None,
            project=str(data.get("project") or DEFAULTS["history"]["project"]),
            lookback_days=_positive(data.get("lookback_days", 14), "history.lookback_days", int),
            timeout_secs=_positive(data.get("timeout_secs", 30.0), "history.timeout_secs", float),
            max_workers=_positive(data.get("max_workers", 8), "history.max_workers", int),
            deadline_secs=_positive(data.get("deadline_secs", 120.0), "history.deadline_secs", float),
            api_user=data.get("api_user"),
            api_key=data.get("api_key"),
            history_file=Path(history_file).expanduser() if history_file else None,
        )


@dataclass(frozen=True)
class EstimatorSettings:
    sample_count: int = 2
    include_failed: bool = False
    default_runtime_secs: float = 60.0
    min_cold_start_secs: float = 1.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EstimatorSettings":
        min_cold = data.get("min_cold_start_secs", 1.0)
        return cls(
            sample_count=_positive(data.get("sample_count", 2), "estimator.sample_count", int),
            include_failed=bool(data.get("include_failed", False)),
            default_runtime_secs=_positive(
                data.get("default_runtime_secs", 60.0), "estimator.default_runtime_secs", float
            ),
            min_cold_start_secs=_positive(min_cold, "estimator.min_cold_start_secs", float),
        )


@dataclass(frozen=True)
class SplitSettings:
    max_sub_suites: int = 5
    max_runtime_secs: Optional[float] = None
    max_tests_per_sub_suite: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SplitSettings":
        return cls(
            max_sub_suites=_positive(data.get("max_sub_suites", 5), "split.max_sub_suites", int),
            max_runtime_secs=_positive(data.get("max_runtime_secs"), "split.max_runtime_secs", float),
            max_tests_per_sub_suite=_positive(
                data.get("max_tests_per_sub_suite"), "split.max_tests_per_sub_suite", int
            ),
        )

    def limits(self) -> SuiteLimits:
        return SuiteLimits(
            max_sub_suites=self.max_sub_suites,
            max_runtime_secs=self.max_runtime_secs,
            max_tests_per_sub_suite=self.max_tests_per_sub_suite,
        )


@dataclass(frozen=True)
class GenerateSettings:
    build_variant: Optional[str] = None
    distro: Optional[str] = None
    large_distro_name: Optional[str] = None
    use_large_distro: bool = False
    create_misc_suite: bool = False
    generator_task_name: str = "taskgen"
    generator_tasks: Tuple[str, ...] = ()
    config_location: Optional[str] = None
    resmoke_args: str = ""
    resmoke_jobs_max: Optional[int] = None
    require_multiversion_setup: bool = False
    depends_on: Tuple[TaskDependency, ...] = (TaskDependency("archive_dist_test_debug"),)
    task_name_template: Optional[str] = None
    output_format: str = "json"
    output_path: Optional[str] = None
    suite_config_dir: Optional[Path] = None
    test_root: Path = Path(".")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GenerateSettings":
        output_format = str(data.get("output_format") or "json").lower()
        if output_format not in ("json", "yaml"):
            raise ConfigError(f"generate.output_format must be 'json' or 'yaml' (got {output_format!r})")
        suite_config_dir = data.get("suite_config_dir")
        generator_tasks = data.get("generator_tasks") or []
        if isinstance(generator_tasks, str):
            generator_tasks = [generator_tasks]
        template = data.get("task_name_template")
        if template is not None and "{index}" not in str(template):
            raise ConfigError("generate.task_name_template must contain '{index}'")
        return cls(
            build_variant=data.get("build_variant"),
            distro=data.get("distro"),
            large_distro_name=data.get("large_distro_name"),
            use_large_distro=bool(data.get("use_large_distro", False)),
            create_misc_suite=bool(data.get("create_misc_suite", False)),
            generator_task_name=str(data.get("generator_task_name") or "taskgen"),
            generator_tasks=tuple(str(name) for name in generator_tasks),
            config_location=data.get("config_location"),
            resmoke_args=str(data.get("resmoke_args") or ""),
            resmoke_jobs_max=_positive(data.get("resmoke_jobs_max"), "generate.resmoke_jobs_max", int),
            require_multiversion_setup=bool(data.get("require_multiversion_setup", False)),
            depends_on=_dependencies(data.get("depends_on"), "generate.depends_on"),
            task_name_template=str(template) if template is not None else None,
            output_format=output_format,
            output_path=data.get("output_path"),
            suite_config_dir=Path(suite_config_dir).expanduser() if suite_config_dir else None,
            test_root=Path(data.get("test_root") or ".").expanduser(),
        )


@dataclass(frozen=True)
class FuzzerSettings:
    """One fuzzer task to generate; see :mod:`taskgen.task_graph`."""

    task_name: str
    suite: str
    num_files: int
    num_tasks: int
    npm_command: str = "jstestfuzz"
    resmoke_args: str = ""
    jstestfuzz_vars: Optional[str] = None
    continue_on_failure: bool = True
    resmoke_jobs_max: int = 1
    should_shuffle: bool = False
    timeout_secs: int = 1800
    require_multiversion_setup: bool = False
    use_large_distro: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FuzzerSettings":
        try:
            task_name = str(data["task_name"])
        except KeyError as exc:
            raise ConfigError("fuzzers entries require 'task_name'") from exc
        return cls(
            task_name=task_name,
            suite=str(data.get("suite") or task_name),
            num_files=_positive(data.get("num_files", 1), f"fuzzers.{task_name}.num_files", int),
            num_tasks=_positive(data.get("num_tasks", 1), f"fuzzers.{task_name}.num_tasks", int),
            npm_command=str(data.get("npm_command") or "jstestfuzz"),
            resmoke_args=str(data.get("resmoke_args") or ""),
            jstestfuzz_vars=data.get("jstestfuzz_vars"),
            continue_on_failure=bool(data.get("continue_on_failure", True)),
            resmoke_jobs_max=_positive(data.get("resmoke_jobs_max", 1), f"fuzzers.{task_name}.resmoke_jobs_max", int),
            should_shuffle=bool(data.get("should_shuffle", False)),
            timeout_secs=_positive(data.get("timeout_secs", 1800), f"fuzzers.{task_name}.timeout_secs", int),
            require_multiversion_setup=bool(data.get("require_multiversion_setup", False)),
            use_large_distro=bool(data.get("use_large_distro", False)),
        )


@dataclass(frozen=True)
class GeneratorSettings:
    history: HistorySettings
    estimator: EstimatorSettings
    split: SplitSettings
    generate: GenerateSettings
    fuzzers: Tuple[FuzzerSettings, ...] = ()
    logger: Mapping[str, Any] = field(default_factory=dict)
    progress: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "GeneratorSettings":
        fuzzers = config.get("fuzzers", list, default=[])
        return cls(
            history=HistorySettings.from_mapping(config.section("history")),
            estimator=EstimatorSettings.from_mapping(config.section("estimator")),
            split=SplitSettings.from_mapping(config.section("split")),
            generate=GenerateSettings.from_mapping(config.section("generate")),
            fuzzers=tuple(FuzzerSettings.from_mapping(entry) for entry in fuzzers),
            logger=config.section("logger"),
            progress=bool(config.get("progress", bool, default=True)),
        )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "GeneratorSettings":
        """Build settings from ``data`` layered over :data:`DEFAULTS`."""

        merged = deep_merge(copy.deepcopy(DEFAULTS), data or {})
        return cls.from_config(Config.from_mapping(merged))
