"""Error taxonomy and run warnings for task generation.

Only two conditions abort a generation run: a partition that loses or
duplicates a test (:class:`PartitionInvariantError`) and a document that cannot
be encoded (:class:`EncodeError`).  Everything else is scoped to a single suite
and surfaces as a :class:`RunWarning` on the run result.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "TaskGenError",
    "ConfigError",
    "InputError",
    "HistoryFetchError",
    "HistoryNotFoundError",
    "HistoryTimeoutError",
    "EncodeError",
    "PartitionInvariantError",
    "RunWarning",
    "WarningCode",
]


class TaskGenError(Exception):
    """Base class for every error raised by :mod:`taskgen`."""


class ConfigError(TaskGenError, ValueError):
    """Configuration file, environment override or CLI value is invalid."""


class InputError(TaskGenError):
    """A suite definition is malformed or one of its test patterns is unreadable."""

    def __init__(self, message: str, *, suite: Optional[str] = None, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.suite = suite
        self.path = path


class HistoryFetchError(TaskGenError):
    """Historical runtimes for a suite could not be retrieved."""

    def __init__(self, message: str, *, suite: Optional[str] = None) -> None:
        super().__init__(message)
        self.suite = suite


class HistoryNotFoundError(HistoryFetchError):
    pass


class HistoryTimeoutError(HistoryFetchError):
    pass


class EncodeError(TaskGenError):
    """The generated configuration could not be serialised."""


class PartitionInvariantError(TaskGenError, AssertionError):
    """A partition dropped or duplicated a test."""


class WarningCode:
    HISTORY_FETCH_FAILED = "history_fetch_failed"
    HISTORY_UNAVAILABLE = "history_unavailable"
    HISTORY_RECORD_SKIPPED = "history_record_skipped"
    UNKNOWN_HISTORY_TEST = "unknown_history_test"
    COLD_START = "cold_start"
    CONSTRAINTS_RELAXED = "constraints_relaxed"
    SUITE_INPUT_ERROR = "suite_input_error"
    EMPTY_PATTERN = "empty_pattern"


@dataclass(frozen=True)
class RunWarning:
    """A non-fatal condition collected during a generation run."""

    code: str
    message: str
    suite: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "suite": self.suite,
            "details": dict(self.details),
        }
