"""Historical test runtime sources.

A provider is constructed once at startup and shared by every fetch.  It
returns raw records; validation happens in :func:`parse_record` so that a
single corrupt entry never poisons a whole suite.
"""
from __future__ import annotations

import dataclasses
import datetime as _dt
import json
import math
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

import requests
from typing_extensions import TypeAlias

from .errors import HistoryFetchError, HistoryNotFoundError, HistoryTimeoutError
from .logger import StructuredLogger
from .models import HistoryRecord, split_hook_name

__all__ = [
    "RawRecord",
    "MalformedRecord",
    "HistoryProvider",
    "EvergreenHistoryProvider",
    "FileHistoryProvider",
    "parse_record",
    "parse_timestamp",
]


logger = StructuredLogger.get_logger("taskgen.history")

RawRecord: TypeAlias = Union[HistoryRecord, Mapping[str, Any]]


class MalformedRecord(ValueError):
    """A single history entry failed validation."""


def parse_timestamp(value: Any) -> _dt.datetime:
    """Parse ``value`` into an aware UTC datetime.

    Accepts datetimes, dates, epoch seconds and ISO-8601 strings (``Z`` suffix
    allowed).
    """

    if isinstance(value, _dt.datetime):
        parsed = value
    elif isinstance(value, _dt.date):
        parsed = _dt.datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise MalformedRecord(f"timestamp is not finite: {value!r}")
        try:
            parsed = _dt.datetime.fromtimestamp(float(value), tz=_dt.timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedRecord(f"timestamp out of range: {value!r}") from exc
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = _dt.datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedRecord(f"unparsable timestamp: {value!r}") from exc
    else:
        raise MalformedRecord(f"unparsable timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed.astimezone(_dt.timezone.utc)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def parse_record(raw: RawRecord) -> HistoryRecord:
    """Validate one raw history entry.

    Mappings may use either the ``{test_id, duration, timestamp, status}``
    shape or the test-stats shape (``test_file``, ``avg_duration_pass``,
    ``date``).  ``test:Hook`` ids become hook records of ``test``.
    """

    if isinstance(raw, HistoryRecord):
        if raw.duration_secs < 0 or not math.isfinite(raw.duration_secs):
            raise MalformedRecord(f"invalid duration for {raw.test_id!r}: {raw.duration_secs!r}")
        return dataclasses.replace(raw, timestamp=parse_timestamp(raw.timestamp))
    if not isinstance(raw, Mapping):
        raise MalformedRecord(f"history record must be a mapping, got {type(raw).__name__}")
    test_id = _first(raw, "test_id", "test_file", "test")
    if not test_id or not isinstance(test_id, str):
        raise MalformedRecord("history record has no test id")
    duration_raw = _first(raw, "duration", "duration_secs", "avg_duration_pass")
    if isinstance(duration_raw, bool):
        raise MalformedRecord(f"invalid duration for {test_id!r}: {duration_raw!r}")
    try:
        duration = float(duration_raw)
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(f"invalid duration for {test_id!r}: {duration_raw!r}") from exc
    if duration < 0 or not math.isfinite(duration):
        raise MalformedRecord(f"invalid duration for {test_id!r}: {duration_raw!r}")
    timestamp = parse_timestamp(_first(raw, "timestamp", "date", "start_time"))
    status = str(_first(raw, "status") or "pass")
    test, hook = split_hook_name(test_id)
    hook = raw.get("hook") or hook
    return HistoryRecord(test_id=test, duration_secs=duration, timestamp=timestamp, status=status, hook=hook)


class HistoryProvider(Protocol):
    def fetch(
        self,
        project: str,
        variant: str,
        suite: str,
        lookback: _dt.timedelta,
        *,
        timeout: Optional[float] = None,
    ) -> Sequence[RawRecord]:  # pragma: no cover - protocol definition
        ...


class EvergreenHistoryProvider:
    """Fetch test statistics from an Evergreen-style REST endpoint.

    The session (and with it the auth headers and connection pool) lives for
    the whole run and is shared by every worker thread.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_user: Optional[str] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        clock=None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        if api_user:
            self._session.headers["Api-User"] = api_user
        if api_key:
            self._session.headers["Api-Key"] = api_key
        self._clock = clock or (lambda: _dt.datetime.now(tz=_dt.timezone.utc))

    def close(self) -> None:
        self._session.close()

    def fetch(
        self,
        project: str,
        variant: str,
        suite: str,
        lookback: _dt.timedelta,
        *,
        timeout: Optional[float] = None,
    ) -> List[RawRecord]:
        today = self._clock()
        start = today - lookback
        params = {
            "after_date": start.strftime("%Y-%m-%d"),
            "before_date": today.strftime("%Y-%m-%d"),
            "group_num_days": max(1, lookback.days),
            "variants": variant,
            "tasks": suite,
        }
        url = f"{self._base_url}/rest/v2/projects/{project}/test_stats"
        logger.debug("history.request", suite=suite, variant=variant, url=url)
        try:
            response = self._session.get(url, params=params, timeout=timeout)
        except requests.Timeout as exc:
            raise HistoryTimeoutError(f"history request for {suite!r} timed out", suite=suite) from exc
        except requests.RequestException as exc:
            raise HistoryFetchError(f"history request for {suite!r} failed: {exc}", suite=suite) from exc
        if response.status_code == 404:
            raise HistoryNotFoundError(f"no history for {suite!r} on {variant!r}", suite=suite)
        try:
            response.raise_for_status()
            payload = response.json()
        except requests.HTTPError as exc:
            raise HistoryFetchError(f"history request for {suite!r} failed: {exc}", suite=suite) from exc
        except ValueError as exc:
            raise HistoryFetchError(f"history response for {suite!r} is not JSON", suite=suite) from exc
        if not isinstance(payload, list):
            raise HistoryFetchError(f"history response for {suite!r} must be a list", suite=suite)
        return [self._to_record(stat) for stat in payload]

    @staticmethod
    def _to_record(stat: Any) -> RawRecord:
        if not isinstance(stat, Mapping):
            return stat
        return {
            "test_id": stat.get("test_file"),
            "duration": stat.get("avg_duration_pass"),
            "timestamp": stat.get("date"),
            "status": "pass",
        }


class FileHistoryProvider:
    """Serve history from a JSON document ``{suite: [record, ...]}``."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._data: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        with self._lock:
            return self._load_locked()

    def _load_locked(self) -> Dict[str, Any]:
        if self._data is None:
            try:
                with self._path.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
            except (OSError, ValueError) as exc:
                raise HistoryFetchError(f"cannot read history file {self._path}: {exc}") from exc
            if not isinstance(data, dict):
                raise HistoryFetchError(f"history file {self._path} must contain an object")
            self._data = data
        return self._data

    def fetch(
        self,
        project: str,
        variant: str,
        suite: str,
        lookback: _dt.timedelta,
        *,
        timeout: Optional[float] = None,
    ) -> List[RawRecord]:
        data = self._load()
        if suite not in data:
            raise HistoryNotFoundError(f"no history for {suite!r} in {self._path}", suite=suite)
        records = data[suite]
        if not isinstance(records, list):
            raise HistoryFetchError(f"history for {suite!r} must be a list", suite=suite)
        return list(records)
