"""Runtime estimation from noisy, partial history.

For each test the estimator keeps successful samples, orders them newest
first and averages the most recent ``sample_count`` of them.  Hook samples
(``test:Hook`` ids) are averaged the same way per hook and added on top.
Tests without a usable sample receive the median estimate of the tests that
do have one, so new tests are weighed like a typical test of *this* suite.
"""
from __future__ import annotations

import statistics
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import RunWarning, WarningCode
from .history import MalformedRecord, RawRecord, parse_record
from .logger import StructuredLogger
from .models import HistoryRecord, RuntimeEstimate, TestFile, normalize_test_name
from .settings import EstimatorSettings

__all__ = ["RuntimeEstimator", "EstimationResult"]


logger = StructuredLogger.get_logger("taskgen.estimator")


@dataclass(frozen=True)
class EstimationResult:
    """One estimate per input test, keyed by test path."""

    estimates: Mapping[str, RuntimeEstimate]
    samples: Mapping[str, Tuple[HistoryRecord, ...]] = field(default_factory=dict)
    warnings: Tuple[RunWarning, ...] = ()
    cold_start_secs: Optional[float] = None

    def __getitem__(self, path: str) -> RuntimeEstimate:
        return self.estimates[path]

    def attach(self, tests: Iterable[TestFile]) -> None:
        for test in tests:
            test.samples = list(self.samples.get(test.path, ()))
            test.assign_estimate(self.estimates[test.path])

    @property
    def cold_start_tests(self) -> List[str]:
        return [path for path, estimate in self.estimates.items() if estimate.is_cold_start]


def _mean_of_recent(samples: Sequence[HistoryRecord], count: int) -> Tuple[float, int]:
    ordered = sorted(samples, key=lambda record: record.timestamp, reverse=True)[:count]
    if not ordered:
        return 0.0, 0
    return sum(record.duration_secs for record in ordered) / len(ordered), len(ordered)


class RuntimeEstimator:
    def __init__(self, settings: Optional[EstimatorSettings] = None) -> None:
        self._settings = settings or EstimatorSettings()

    def estimate(
        self,
        tests: Sequence[TestFile],
        records: Iterable[RawRecord],
        *,
        suite: Optional[str] = None,
    ) -> EstimationResult:
        warnings: List[RunWarning] = []
        by_name = self._index_tests(tests)
        test_samples: Dict[str, List[HistoryRecord]] = defaultdict(list)
        hook_samples: Dict[str, Dict[str, List[HistoryRecord]]] = defaultdict(lambda: defaultdict(list))
        seen: Set[Tuple[str, Optional[str], float, str, str]] = set()
        skipped = 0
        unknown: Set[str] = set()

        for raw in records:
            try:
                record = parse_record(raw)
            except MalformedRecord as exc:
                skipped += 1
                logger.warning("estimator.record_skipped", suite=suite, reason=str(exc))
                continue
            key = (record.test_id, record.hook, record.duration_secs, record.timestamp.isoformat(), record.status)
            if key in seen:
                continue
            seen.add(key)
            if not record.succeeded and not self._settings.include_failed:
                continue
            name = record.test_name
            if name not in by_name:
                unknown.add(name)
                continue
            for path in by_name[name]:
                if record.hook is None:
                    test_samples[path].append(record)
                else:
                    hook_samples[path][record.hook].append(record)

        if skipped:
            warnings.append(
                RunWarning(
                    code=WarningCode.HISTORY_RECORD_SKIPPED,
                    message=f"skipped {skipped} malformed history record(s)",
                    suite=suite,
                    details={"count": skipped},
                )
            )
        if unknown:
            logger.debug("estimator.unknown_tests", suite=suite, tests=sorted(unknown))
            warnings.append(
                RunWarning(
                    code=WarningCode.UNKNOWN_HISTORY_TEST,
                    message=f"{len(unknown)} history test(s) are not part of the suite",
                    suite=suite,
                    details={"tests": sorted(unknown)},
                )
            )

        estimates: Dict[str, RuntimeEstimate] = OrderedDict()
        samples: Dict[str, Tuple[HistoryRecord, ...]] = {}
        pending: List[TestFile] = []
        count = self._settings.sample_count
        for test in tests:
            if test.path in estimates:
                continue
            own = test_samples.get(test.path, [])
            if not own:
                pending.append(test)
                continue
            runtime, used = _mean_of_recent(own, count)
            hook_total = 0.0
            for hook_name in sorted(hook_samples.get(test.path, {})):
                hook_total += _mean_of_recent(hook_samples[test.path][hook_name], count)[0]
            estimates[test.path] = RuntimeEstimate(
                test=test.path,
                runtime_secs=runtime + hook_total,
                source="history",
                sample_count=used,
                hook_secs=hook_total,
            )
            samples[test.path] = tuple(own) + tuple(
                record for hook_name in sorted(hook_samples.get(test.path, {}))
                for record in hook_samples[test.path][hook_name]
            )

        cold_start = self._cold_start_value(estimates.values()) if pending else None
        for test in pending:
            estimates[test.path] = RuntimeEstimate(test=test.path, runtime_secs=cold_start, source="cold_start")
        if pending:
            logger.info("estimator.cold_start", suite=suite, tests=len(pending), runtime_secs=cold_start)
            warnings.append(
                RunWarning(
                    code=WarningCode.COLD_START,
                    message=f"{len(pending)} test(s) have no usable history; using {cold_start:.3f}s",
                    suite=suite,
                    details={"tests": [test.path for test in pending], "runtime_secs": cold_start},
                )
            )

        ordered = OrderedDict((test.path, estimates[test.path]) for test in tests)
        return EstimationResult(
            estimates=ordered,
            samples=samples,
            warnings=tuple(warnings),
            cold_start_secs=cold_start,
        )

    def _cold_start_value(self, known: Iterable[RuntimeEstimate]) -> float:
        values = [estimate.runtime_secs for estimate in known]
        if not values:
            return float(self._settings.default_runtime_secs)
        return max(float(statistics.median(values)), float(self._settings.min_cold_start_secs))

    @staticmethod
    def _index_tests(tests: Sequence[TestFile]) -> Dict[str, List[str]]:
        index: Dict[str, List[str]] = defaultdict(list)
        for test in tests:
            paths = index[normalize_test_name(test.path)]
            if test.path not in paths:
                paths.append(test.path)
        return index
