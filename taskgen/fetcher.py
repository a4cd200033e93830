"""Concurrent history fetching with a single collecting loop.

Each suite is one unit of work on a bounded thread pool.  Workers never touch
shared state: every job puts exactly one ``(suite, records-or-error)`` message
on a queue and the calling thread is the only consumer.  Suites still running
when the overall deadline passes are reported as timeouts; their threads are
abandoned, not joined.
"""
from __future__ import annotations

import concurrent.futures
import datetime as _dt
import queue
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import HistoryFetchError, HistoryTimeoutError
from .history import HistoryProvider, RawRecord
from .logger import StructuredLogger

__all__ = ["FetchPolicy", "FetchRequest", "FetchOutcome", "FetchEvents", "HistoryFetcher", "failed_suites"]


logger = StructuredLogger.get_logger("taskgen.fetcher")


@dataclass(frozen=True)
class FetchPolicy:
    max_workers: int = 8
    per_fetch_timeout: Optional[float] = 30.0
    deadline: Optional[float] = 120.0

    def __post_init__(self) -> None:
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")
        if self.per_fetch_timeout is not None and self.per_fetch_timeout <= 0:
            raise ValueError("per_fetch_timeout must be positive when provided")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline must be positive when provided")


@dataclass(frozen=True)
class FetchRequest:
    suite: str
    project: str
    variant: str
    lookback: _dt.timedelta = _dt.timedelta(days=14)
    task: Optional[str] = None


@dataclass(frozen=True)
class FetchOutcome:
    suite: str
    records: Tuple[RawRecord, ...] = ()
    error: Optional[HistoryFetchError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FetchEvents:
    on_success: Callable[[FetchOutcome], None] = lambda outcome: None
    on_failure: Callable[[FetchOutcome], None] = lambda outcome: None


_Message = Tuple[str, Union[Tuple[RawRecord, ...], HistoryFetchError], float]


class HistoryFetcher:
    def __init__(
        self,
        provider: HistoryProvider,
        policy: Optional[FetchPolicy] = None,
        events: Optional[FetchEvents] = None,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._policy = policy or FetchPolicy()
        self._events = events or FetchEvents()
        self._monotonic = monotonic

    def fetch_all(self, requests: Sequence[FetchRequest]) -> Dict[str, FetchOutcome]:
        """Fetch history for every request; never raises for a single suite."""

        if not requests:
            return {}
        suites = [request.suite for request in requests]
        if len(set(suites)) != len(suites):
            raise ValueError("fetch requests must have unique suite names")

        results: "queue.Queue[_Message]" = queue.Queue()
        outcomes: Dict[str, FetchOutcome] = {}
        started = self._monotonic()
        deadline_at = started + self._policy.deadline if self._policy.deadline is not None else None
        workers = min(self._policy.max_workers, len(requests))
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="history-fetch")
        logger.info("fetcher.start", suites=len(requests), workers=workers, deadline=self._policy.deadline)
        try:
            for request in requests:
                executor.submit(self._run_one, request, results)
            while len(outcomes) < len(requests):
                remaining = None if deadline_at is None else deadline_at - self._monotonic()
                if remaining is not None and remaining <= 0:
                    break
                try:
                    suite, payload, elapsed = results.get(timeout=remaining)
                except queue.Empty:
                    break
                outcome = self._to_outcome(suite, payload, elapsed)
                outcomes[suite] = outcome
                if outcome.ok:
                    self._events.on_success(outcome)
                else:
                    self._events.on_failure(outcome)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for request in requests:
            if request.suite in outcomes:
                continue
            error = HistoryTimeoutError(
                f"history fetch for {request.suite!r} did not finish before the deadline",
                suite=request.suite,
            )
            outcome = FetchOutcome(suite=request.suite, error=error, elapsed=self._monotonic() - started)
            logger.warning("fetcher.deadline_exceeded", suite=request.suite, deadline=self._policy.deadline)
            outcomes[request.suite] = outcome
            self._events.on_failure(outcome)
        logger.info(
            "fetcher.done",
            ok=sum(1 for outcome in outcomes.values() if outcome.ok),
            failed=sum(1 for outcome in outcomes.values() if not outcome.ok),
            duration_ms=round((self._monotonic() - started) * 1000.0, 3),
        )
        return {request.suite: outcomes[request.suite] for request in requests}

    def _run_one(self, request: FetchRequest, results: "queue.Queue[_Message]") -> None:
        start = self._monotonic()
        payload: Union[Tuple[RawRecord, ...], HistoryFetchError]
        try:
            records = self._provider.fetch(
                request.project,
                request.variant,
                request.task or request.suite,
                request.lookback,
                timeout=self._policy.per_fetch_timeout,
            )
            payload = tuple(records)
        except HistoryFetchError as exc:
            payload = exc
        except Exception as exc:  # provider bugs must stay scoped to their suite
            wrapped = HistoryFetchError(f"history fetch for {request.suite!r} failed: {exc}", suite=request.suite)
            wrapped.__cause__ = exc
            payload = wrapped
        results.put((request.suite, payload, self._monotonic() - start))

    @staticmethod
    def _to_outcome(
        suite: str, payload: Union[Tuple[RawRecord, ...], HistoryFetchError], elapsed: float
    ) -> FetchOutcome:
        if isinstance(payload, HistoryFetchError):
            if payload.suite is None:
                payload.suite = suite
            logger.warning(
                "fetcher.suite_failed",
                suite=suite,
                error_type=type(payload).__name__,
                error=str(payload),
            )
            return FetchOutcome(suite=suite, error=payload, elapsed=elapsed)
        logger.debug("fetcher.suite_done", suite=suite, records=len(payload), duration_ms=round(elapsed * 1000.0, 3))
        return FetchOutcome(suite=suite, records=payload, elapsed=elapsed)


def failed_suites(outcomes: Dict[str, FetchOutcome]) -> List[str]:
    return [suite for suite, outcome in outcomes.items() if not outcome.ok]
