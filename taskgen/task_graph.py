"""Turn partition plans into the generated task configuration.

The builder is pure: it holds no I/O and produces the same
:class:`GeneratedConfig` for the same plans and settings.  Everything it emits
is an immutable tuple-based structure so that ``to_dict`` is stable.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .logger import StructuredLogger
from .models import GeneratedSuite, SubSuite, Suite, TaskDependency, TestFile
from .partitioner import PartitionPlan
from .settings import FuzzerSettings, GenerateSettings
from .taskname import name_generated_task, remove_gen_suffix, render_task_name

__all__ = [
    "FunctionCall",
    "GeneratedTask",
    "DisplayTask",
    "TaskRef",
    "BuildVariant",
    "GeneratorReference",
    "GeneratedConfig",
    "TaskGraphBuilder",
    "GENERATOR_DISPLAY_TASK",
    "build_config",
]


logger = StructuredLogger.get_logger("taskgen.task_graph")

GENERATOR_DISPLAY_TASK = "generator_tasks"
FUZZER_DEPENDENCY = TaskDependency("archive_dist_test_debug")

_SETUP_FUNCTIONS = ("do setup", "configure evergreen api credentials")
_MULTIVERSION_FUNCTIONS = ("git get project no modules", "add git tag", "do multiversion setup")


@dataclass(frozen=True)
class FunctionCall:
    func: str
    vars: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, func: str, variables: Optional[Mapping[str, Any]] = None) -> "FunctionCall":
        items = tuple(sorted((key, value) for key, value in (variables or {}).items() if value is not None))
        return cls(func=func, vars=items)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"func": self.func}
        if self.vars:
            data["vars"] = dict(self.vars)
        return data


@dataclass(frozen=True)
class GeneratedTask:
    name: str
    commands: Tuple[FunctionCall, ...]
    depends_on: Tuple[TaskDependency, ...] = ()
    tags: Tuple[str, ...] = ()
    tests: Tuple[str, ...] = ()
    estimated_runtime_secs: float = 0.0
    distro: Optional[str] = None
    variant: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "commands": [command.to_dict() for command in self.commands],
            "depends_on": [dep.to_dict() for dep in self.depends_on],
            "tags": list(self.tags),
            "tests": list(self.tests),
            "estimated_runtime_secs": round(self.estimated_runtime_secs, 3),
        }
        if self.distro is not None:
            data["distro"] = self.distro
        if self.variant is not None:
            data["variant"] = self.variant
        return data


@dataclass(frozen=True)
class DisplayTask:
    name: str
    execution_tasks: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "execution_tasks": list(self.execution_tasks)}


@dataclass(frozen=True)
class TaskRef:
    name: str
    distro: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.distro is not None:
            data["distros"] = [self.distro]
        return data


@dataclass(frozen=True)
class BuildVariant:
    name: str
    tasks: Tuple[TaskRef, ...] = ()
    display_tasks: Tuple[DisplayTask, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "tasks": [ref.to_dict() for ref in self.tasks]}
        if self.display_tasks:
            data["display_tasks"] = [display.to_dict() for display in self.display_tasks]
        return data


@dataclass(frozen=True)
class GeneratorReference:
    """Top-level entry naming the generator and every task it produced."""

    name: str
    variant: str
    tasks: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "variant": self.variant, "tasks": list(self.tasks)}


@dataclass(frozen=True)
class GeneratedConfig:
    generator: GeneratorReference
    tasks: Tuple[GeneratedTask, ...] = ()
    build_variants: Tuple[BuildVariant, ...] = ()
    suites: Tuple[GeneratedSuite, ...] = field(default=(), compare=False)

    def task_names(self) -> List[str]:
        return [task.name for task in self.tasks]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generator": self.generator.to_dict(),
            "tasks": [task.to_dict() for task in self.tasks],
            "buildvariants": [variant.to_dict() for variant in self.build_variants],
        }


class TaskGraphBuilder:
    """Accumulate generated suites and fuzzers for one build variant."""

    def __init__(self, settings: GenerateSettings, variant: str) -> None:
        if not variant:
            raise ValueError("a build variant is required to generate tasks")
        self._settings = settings
        self._variant = variant
        self._suites: List[GeneratedSuite] = []
        self._tasks: List[GeneratedTask] = []
        self._display_tasks: List[DisplayTask] = []

    # ------------------------------------------------------------------ suites
    def generated_suite(self, suite: Suite, plan: PartitionPlan[TestFile]) -> GeneratedSuite:
        """Name the bins of ``plan`` and attach distro/variant metadata."""

        total = len(plan.bins)
        distro = self._distro_for(suite)
        base_name = remove_gen_suffix(suite.name)
        sub_suites = tuple(
            SubSuite(
                name=render_task_name(
                    self._settings.task_name_template, base_name, bin_.index, total, self._variant
                ),
                index=bin_.index,
                tests=tuple(bin_.items),
                runtime_secs=bin_.total,
                variant=self._variant,
                distro=distro,
            )
            for bin_ in plan.bins
        )
        misc_name = None
        if self._settings.create_misc_suite and plan.bins:
            misc_name = name_generated_task(base_name, None, None, self._variant)
        return GeneratedSuite(suite=suite, sub_suites=sub_suites, misc_name=misc_name)

    def add_suite(self, generated: GeneratedSuite) -> None:
        suite = generated.suite
        depends_on = suite.depends_on or self._settings.depends_on
        distro = self._distro_for(suite)
        names = []
        for sub in generated.sub_suites:
            self._tasks.append(
                GeneratedTask(
                    name=sub.name,
                    commands=self._resmoke_commands(suite.name, sub.name),
                    depends_on=depends_on,
                    tags=suite.tags,
                    tests=tuple(sub.test_paths()),
                    estimated_runtime_secs=sub.runtime_secs,
                    distro=sub.distro,
                    variant=self._variant,
                )
            )
            names.append(sub.name)
        if generated.misc_name is not None:
            self._tasks.append(
                GeneratedTask(
                    name=generated.misc_name,
                    commands=self._resmoke_commands(suite.name, generated.misc_name),
                    depends_on=depends_on,
                    tags=suite.tags,
                    distro=distro,
                    variant=self._variant,
                )
            )
            names.append(generated.misc_name)
        if names:
            self._display_tasks.append(DisplayTask(name=remove_gen_suffix(suite.name), execution_tasks=tuple(names)))
        self._suites.append(generated)
        logger.debug("task_graph.suite_added", suite=suite.name, tasks=len(names))

    def _resmoke_commands(self, origin_suite: str, task_name: str) -> Tuple[FunctionCall, ...]:
        settings = self._settings
        resmoke_args = f"--originSuite={origin_suite} {settings.resmoke_args}".strip()
        suite_file = task_name
        if settings.suite_config_dir is not None:
            suite_file = posixpath.join(settings.suite_config_dir.as_posix(), f"{task_name}.yml")
        run_vars: Dict[str, Any] = {
            "suite": suite_file,
            "resmoke_args": resmoke_args,
            "require_multiversion_setup": settings.require_multiversion_setup,
            "gen_task_config_location": settings.config_location,
            "resmoke_jobs_max": settings.resmoke_jobs_max,
        }
        return self._setup(settings.require_multiversion_setup) + (FunctionCall.of("run generated tests", run_vars),)

    @staticmethod
    def _setup(multiversion: bool) -> Tuple[FunctionCall, ...]:
        functions = _SETUP_FUNCTIONS + (_MULTIVERSION_FUNCTIONS if multiversion else ())
        return tuple(FunctionCall.of(func) for func in functions)

    def _distro_for(self, suite: Suite) -> Optional[str]:
        wants_large = suite.use_large_distro if suite.use_large_distro is not None else self._settings.use_large_distro
        if wants_large:
            if self._settings.large_distro_name:
                return self._settings.large_distro_name
            logger.warning("task_graph.large_distro_missing", suite=suite.name, variant=self._variant)
        return self._settings.distro

    # ----------------------------------------------------------------- fuzzers
    def add_fuzzer(self, fuzzer: FuzzerSettings) -> None:
        base_name = remove_gen_suffix(fuzzer.task_name)
        distro = self._settings.large_distro_name if fuzzer.use_large_distro else None
        distro = distro or self._settings.distro
        names = []
        for index in range(fuzzer.num_tasks):
            name = name_generated_task(base_name, index, fuzzer.num_tasks, self._variant)
            jstestfuzz_vars = f"--numGeneratedFiles {fuzzer.num_files}"
            if fuzzer.jstestfuzz_vars:
                jstestfuzz_vars = f"{jstestfuzz_vars} {fuzzer.jstestfuzz_vars}"
            commands = self._setup(fuzzer.require_multiversion_setup) + (
                FunctionCall.of("setup jstestfuzz"),
                FunctionCall.of(
                    "run jstestfuzz",
                    {"npm_command": fuzzer.npm_command, "jstestfuzz_vars": jstestfuzz_vars},
                ),
                FunctionCall.of(
                    "run generated tests",
                    {
                        "suite": fuzzer.suite,
                        "resmoke_args": fuzzer.resmoke_args or None,
                        "continue_on_failure": fuzzer.continue_on_failure,
                        "resmoke_jobs_max": fuzzer.resmoke_jobs_max,
                        "should_shuffle": fuzzer.should_shuffle,
                        "timeout_secs": fuzzer.timeout_secs,
                        "require_multiversion_setup": fuzzer.require_multiversion_setup,
                        "task_name": base_name,
                    },
                ),
            )
            self._tasks.append(
                GeneratedTask(
                    name=name,
                    commands=commands,
                    depends_on=(FUZZER_DEPENDENCY,),
                    distro=distro,
                    variant=self._variant,
                )
            )
            names.append(name)
        self._display_tasks.append(DisplayTask(name=base_name, execution_tasks=tuple(names)))
        logger.debug("task_graph.fuzzer_added", fuzzer=base_name, tasks=len(names))

    # ------------------------------------------------------------------ output
    def build(self) -> GeneratedConfig:
        display_tasks = list(self._display_tasks)
        if self._settings.generator_tasks:
            display_tasks.append(
                DisplayTask(name=GENERATOR_DISPLAY_TASK, execution_tasks=tuple(self._settings.generator_tasks))
            )
        variant = BuildVariant(
            name=self._variant,
            tasks=tuple(TaskRef(task.name, task.distro) for task in self._tasks),
            display_tasks=tuple(display_tasks),
        )
        generator = GeneratorReference(
            name=self._settings.generator_task_name,
            variant=self._variant,
            tasks=tuple(task.name for task in self._tasks),
        )
        return GeneratedConfig(
            generator=generator,
            tasks=tuple(self._tasks),
            build_variants=(variant,),
            suites=tuple(self._suites),
        )


def build_config(
    settings: GenerateSettings,
    variant: str,
    plans: Sequence[Tuple[Suite, PartitionPlan[TestFile]]],
    fuzzers: Sequence[FuzzerSettings] = (),
) -> GeneratedConfig:
    """Convenience wrapper building a config from ``(suite, plan)`` pairs."""

    builder = TaskGraphBuilder(settings, variant)
    for suite, plan in plans:
        builder.add_suite(builder.generated_suite(suite, plan))
    for fuzzer in fuzzers:
        builder.add_fuzzer(fuzzer)
    return builder.build()
