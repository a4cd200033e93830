"""Shared data model for suites, history and generated sub-suites."""
from __future__ import annotations

import datetime as _dt
import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

__all__ = [
    "TestFile",
    "HistoryRecord",
    "RuntimeEstimate",
    "SuiteLimits",
    "Suite",
    "TaskDependency",
    "SubSuite",
    "GeneratedSuite",
    "normalize_test_name",
    "split_hook_name",
    "SUCCESS_STATUSES",
]


SUCCESS_STATUSES = frozenset({"pass", "passed", "success", "succeeded", "ok"})
_STRIPPED_EXTENSIONS = (".js", ".py")


def normalize_test_name(test_id: str) -> str:
    """Return the key used to match a test file against history entries.

    History may report ``jstests/core/foo.js``, ``jstests\\core\\foo.js`` or
    just ``foo``; all three map to ``foo``.
    """

    name = posixpath.basename(str(test_id).replace("\\", "/").rstrip("/"))
    for ext in _STRIPPED_EXTENSIONS:
        if name.endswith(ext):
            return name[: -len(ext)]
    return name


def split_hook_name(test_id: str) -> Tuple[str, Optional[str]]:
    """Split ``test:Hook`` history ids into ``(test, hook)``."""

    if ":" not in test_id:
        return test_id, None
    test, _, hook = test_id.rpartition(":")
    return test, hook or None


class TestFile:
    """A single test file of a suite.

    ``samples`` holds the validated history samples attached to the test and
    ``estimate`` is set exactly once by the runtime estimator.
    """

    __test__ = False  # keep pytest from collecting this as a test case

    def __init__(self, path: str, *, position: int, tags: Tuple[str, ...] = ()) -> None:
        self.path = path
        self.position = position
        self.tags = tuple(tags)
        self.samples: List["HistoryRecord"] = []
        self._estimate: Optional["RuntimeEstimate"] = None

    @property
    def name(self) -> str:
        return normalize_test_name(self.path)

    @property
    def estimate(self) -> Optional["RuntimeEstimate"]:
        return self._estimate

    def assign_estimate(self, estimate: "RuntimeEstimate") -> None:
        if self._estimate is not None:
            raise ValueError(f"estimate for {self.path!r} is already set")
        if estimate.runtime_secs < 0:
            raise ValueError("runtime estimate must be non-negative")
        self._estimate = estimate

    def __repr__(self) -> str:
        return f"TestFile({self.path!r}, position={self.position})"


@dataclass(frozen=True)
class HistoryRecord:
    test_id: str
    duration_secs: float
    timestamp: _dt.datetime
    status: str = "pass"
    hook: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status.lower() in SUCCESS_STATUSES

    @property
    def test_name(self) -> str:
        return normalize_test_name(self.test_id)


@dataclass(frozen=True)
class RuntimeEstimate:
    test: str
    runtime_secs: float
    source: str
    sample_count: int = 0
    hook_secs: float = 0.0

    @property
    def is_cold_start(self) -> bool:
        return self.source == "cold_start"


@dataclass(frozen=True)
class SuiteLimits:
    """Partition limits for one suite.

    ``max_sub_suites`` is a hard ceiling; the runtime and test-count limits are
    soft targets that the partitioner relaxes instead of dropping tests.
    """

    max_sub_suites: int
    max_runtime_secs: Optional[float] = None
    max_tests_per_sub_suite: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_sub_suites <= 0:
            raise ValueError("max_sub_suites must be positive")
        if self.max_runtime_secs is not None and self.max_runtime_secs <= 0:
            raise ValueError("max_runtime_secs must be positive")
        if self.max_tests_per_sub_suite is not None and self.max_tests_per_sub_suite <= 0:
            raise ValueError("max_tests_per_sub_suite must be positive")

    def merged(self, overrides: Mapping[str, Any]) -> "SuiteLimits":
        values: Dict[str, Any] = {
            "max_sub_suites": self.max_sub_suites,
            "max_runtime_secs": self.max_runtime_secs,
            "max_tests_per_sub_suite": self.max_tests_per_sub_suite,
        }
        values.update({k: v for k, v in overrides.items() if k in values and v is not None})
        return SuiteLimits(**values)


@dataclass(frozen=True)
class TaskDependency:
    name: str
    variant: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.variant is not None:
            data["variant"] = self.variant
        return data


@dataclass
class Suite:
    name: str
    tests: List[TestFile]
    tags: Tuple[str, ...] = ()
    depends_on: Tuple[TaskDependency, ...] = ()
    limit_overrides: Mapping[str, Any] = field(default_factory=dict)
    source_path: Optional[str] = None
    definition: Mapping[str, Any] = field(default_factory=dict)
    use_large_distro: Optional[bool] = None

    def test_paths(self) -> List[str]:
        return [test.path for test in self.tests]


@dataclass(frozen=True)
class SubSuite:
    name: str
    index: int
    tests: Tuple[TestFile, ...]
    runtime_secs: float
    variant: Optional[str] = None
    distro: Optional[str] = None

    def test_paths(self) -> List[str]:
        return [test.path for test in self.tests]


@dataclass(frozen=True)
class GeneratedSuite:
    """All sub-suites produced for one source suite."""

    suite: Suite
    sub_suites: Tuple[SubSuite, ...]
    misc_name: Optional[str] = None

    @property
    def name(self) -> str:
        return self.suite.name

    def task_names(self) -> List[str]:
        names = [sub.name for sub in self.sub_suites]
        if self.misc_name is not None:
            names.append(self.misc_name)
        return names

    def all_test_paths(self) -> List[str]:
        return [path for sub in self.sub_suites for path in sub.test_paths()]
