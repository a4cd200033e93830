"""Suite partitioning service.

Distributes weighted tests over sub-suites with a deterministic
longest-processing-time-first (LPT) greedy:

1. Order tests by estimate, largest first; ties keep suite order.
2. Place each test in the least-loaded open bin that stays within the
   runtime target and the test-count limit (equal loads: earliest bin).
3. Otherwise open a new bin while the bin ceiling allows it.
4. Otherwise force the test into the least-loaded bin, relaxing the soft
   limits.  No test is ever dropped and the ceiling is never exceeded.

The runtime target is the balanced share ``total / max_sub_suites``, capped by
``max_runtime_secs`` when one is configured.  A test larger than the target
cannot join any bin, so it opens its own and stays isolated.  The same walk is
also run over pre-opened bins (classic LPT, bounded by 4/3 of the optimal
makespan) and the better packing is kept.
"""
from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Generic, List, Optional, Sequence, Tuple, TypeVar

from .errors import PartitionInvariantError
from .logger import StructuredLogger
from .models import SuiteLimits

__all__ = [
    "PartitionConstraints",
    "PartitionBin",
    "PartitionStatistics",
    "PartitionPlan",
    "SuitePartitioner",
]


logger = StructuredLogger.get_logger("taskgen.partitioner")

T = TypeVar("T")

_EPSILON = 1e-9


@dataclass(frozen=True)
class PartitionConstraints:
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

    @classmethod
    def from_limits(cls, limits: SuiteLimits) -> "PartitionConstraints":
        return cls(
            max_sub_suites=limits.max_sub_suites,
            max_runtime_secs=limits.max_runtime_secs,
            max_tests_per_sub_suite=limits.max_tests_per_sub_suite,
        )


@dataclass(frozen=True)
class _Weighted(Generic[T]):
    item: T
    weight: float
    position: int


@dataclass
class _BinBuilder(Generic[T]):
    index: int
    entries: List[_Weighted[T]] = field(default_factory=list)
    total: float = 0.0

    @property
    def count(self) -> int:
        return len(self.entries)

    def add(self, entry: _Weighted[T]) -> None:
        self.entries.append(entry)
        self.total += entry.weight

    def accepts(self, entry: _Weighted[T], target: float, constraints: PartitionConstraints) -> bool:
        if constraints.max_tests_per_sub_suite is not None and self.count >= constraints.max_tests_per_sub_suite:
            return False
        if not self.entries:
            return True
        return self.total + entry.weight <= target + _EPSILON

    def build(self, index: int) -> "PartitionBin[T]":
        ordered = sorted(self.entries, key=lambda entry: entry.position)
        return PartitionBin(
            index=index,
            items=tuple(entry.item for entry in ordered),
            weights=tuple(entry.weight for entry in ordered),
            positions=tuple(entry.position for entry in ordered),
            total=self.total,
        )


@dataclass(frozen=True)
class PartitionBin(Generic[T]):
    """One sub-suite worth of tests, listed in suite order."""

    index: int
    items: Tuple[T, ...]
    weights: Tuple[float, ...]
    positions: Tuple[int, ...]
    total: float

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class PartitionStatistics:
    bin_count: int
    total_runtime: float
    max_runtime: float
    min_runtime: float
    mean_runtime: float
    imbalance_ratio: float
    gini_coefficient: float
    target_runtime: float


@dataclass(frozen=True)
class PartitionPlan(Generic[T]):
    bins: Tuple[PartitionBin[T], ...]
    constraints: PartitionConstraints
    statistics: PartitionStatistics
    item_count: int
    relaxed: FrozenSet[str] = frozenset()
    forced_items: Tuple[int, ...] = ()

    @property
    def makespan(self) -> float:
        return self.statistics.max_runtime

    def ensure_valid(self) -> None:
        """Check exact cover and the bin ceiling."""

        if len(self.bins) > self.constraints.max_sub_suites:
            raise PartitionInvariantError(
                f"partition has {len(self.bins)} bins, ceiling is {self.constraints.max_sub_suites}"
            )
        counts = Counter(position for bin_ in self.bins for position in bin_.positions)
        duplicated = sorted(position for position, seen in counts.items() if seen > 1)
        missing = sorted(set(range(self.item_count)) - set(counts))
        extra = sorted(position for position in counts if not 0 <= position < self.item_count)
        if duplicated or missing or extra:
            raise PartitionInvariantError(
                f"partition is not an exact cover: duplicated={duplicated} missing={missing} unknown={extra}"
            )
        if any(len(bin_) == 0 for bin_ in self.bins):
            raise PartitionInvariantError("partition contains an empty bin")

    def summary(self) -> Dict[str, Any]:
        return {
            "bins": [
                {"index": bin_.index, "tests": len(bin_), "runtime": round(bin_.total, 6)}
                for bin_ in self.bins
            ],
            "statistics": {
                "bin_count": self.statistics.bin_count,
                "makespan": round(self.statistics.max_runtime, 6),
                "imbalance_ratio": round(self.statistics.imbalance_ratio, 6),
                "gini": round(self.statistics.gini_coefficient, 6),
            },
            "relaxed": sorted(self.relaxed),
        }


def _compute_gini(values: Sequence[float]) -> float:
    filtered = sorted(v for v in values if v >= 0)
    total = sum(filtered)
    if not filtered or total == 0:
        return 0.0
    n = len(filtered)
    cum = 0.0
    for i, val in enumerate(filtered, 1):
        cum += i * val
    return (2 * cum) / (n * total) - (n + 1) / n


def _statistics(bins: Sequence[PartitionBin[Any]], target: float) -> PartitionStatistics:
    totals = [bin_.total for bin_ in bins]
    if not totals:
        return PartitionStatistics(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, target)
    total = sum(totals)
    mean = total / len(totals)
    return PartitionStatistics(
        bin_count=len(totals),
        total_runtime=total,
        max_runtime=max(totals),
        min_runtime=min(totals),
        mean_runtime=mean,
        imbalance_ratio=max(totals) / mean if mean else 0.0,
        gini_coefficient=_compute_gini(totals),
        target_runtime=target,
    )


@dataclass(frozen=True)
class _Packing(Generic[T]):
    bins: Tuple[PartitionBin[T], ...]
    forced: Tuple[int, ...]
    relaxed: FrozenSet[str]
    target: float

    @property
    def makespan(self) -> float:
        return max((bin_.total for bin_ in self.bins), default=0.0)

    def rank(self) -> Tuple[int, float, int]:
        return (len(self.relaxed), round(self.makespan, 9), len(self.bins))


class SuitePartitioner:
    """Pure, single-threaded LPT partitioner.

    Two deterministic packings are built from the same ordering: one filling
    bins up to the balanced share before opening another, and classic LPT over
    ``min(max_sub_suites, n)`` bins.  The plan keeps whichever relaxes fewer
    limits, then has the smaller makespan, then uses fewer bins; on a full tie
    the first packing wins.
    """

    def partition(
        self,
        items: Sequence[Tuple[T, float]],
        constraints: PartitionConstraints,
    ) -> PartitionPlan[T]:
        weighted = [self._weighted(item, weight, position) for position, (item, weight) in enumerate(items)]
        if not weighted:
            plan: PartitionPlan[T] = PartitionPlan(
                bins=(), constraints=constraints, statistics=_statistics((), 0.0), item_count=0
            )
            plan.ensure_valid()
            return plan

        ordered = sorted(weighted, key=lambda entry: (-entry.weight, entry.position))
        share = self._target(weighted, constraints)
        cap = constraints.max_runtime_secs if constraints.max_runtime_secs is not None else math.inf
        candidates = [
            self._pack(ordered, constraints, target=share, opened=0),
            self._pack(ordered, constraints, target=cap, opened=min(constraints.max_sub_suites, len(ordered))),
        ]
        best = min(candidates, key=lambda packing: packing.rank())

        plan = PartitionPlan(
            bins=best.bins,
            constraints=constraints,
            statistics=_statistics(best.bins, best.target),
            item_count=len(weighted),
            relaxed=best.relaxed,
            forced_items=best.forced,
        )
        plan.ensure_valid()
        logger.debug(
            "partitioner.plan",
            tests=len(weighted),
            bins=len(best.bins),
            target=round(share, 6),
            makespan=round(plan.makespan, 6),
            forced=len(best.forced),
        )
        if best.relaxed:
            logger.info("partitioner.constraints_relaxed", relaxed=sorted(best.relaxed), forced=len(best.forced))
        return plan

    def _pack(
        self,
        ordered: Sequence[_Weighted[T]],
        constraints: PartitionConstraints,
        *,
        target: float,
        opened: int,
    ) -> _Packing[T]:
        builders: List[_BinBuilder[T]] = [_BinBuilder[T](index=i) for i in range(opened)]
        forced: List[int] = []
        for entry in ordered:
            eligible = [builder for builder in builders if builder.accepts(entry, target, constraints)]
            if eligible:
                min(eligible, key=lambda b: (b.total, b.index)).add(entry)
                continue
            if len(builders) < constraints.max_sub_suites:
                builder = _BinBuilder[T](index=len(builders))
                builder.add(entry)
                builders.append(builder)
                continue
            min(builders, key=lambda b: (b.total, b.index)).add(entry)
            forced.append(entry.position)

        used = [builder for builder in builders if builder.entries]
        bins = tuple(builder.build(index) for index, builder in enumerate(used))
        return _Packing(
            bins=bins,
            forced=tuple(sorted(forced)),
            relaxed=self._relaxed(bins, constraints),
            target=target,
        )

    @staticmethod
    def _weighted(item: T, weight: float, position: int) -> _Weighted[T]:
        weight = float(weight)
        if weight < 0 or math.isnan(weight) or math.isinf(weight):
            raise ValueError(f"estimate for item {position} must be a finite non-negative number (got {weight!r})")
        return _Weighted(item=item, weight=weight, position=position)

    @staticmethod
    def _target(weighted: Sequence[_Weighted[Any]], constraints: PartitionConstraints) -> float:
        total = sum(entry.weight for entry in weighted)
        target = total / min(constraints.max_sub_suites, len(weighted))
        if constraints.max_runtime_secs is not None:
            target = min(target, constraints.max_runtime_secs)
        return target

    @staticmethod
    def _relaxed(bins: Sequence[PartitionBin[Any]], constraints: PartitionConstraints) -> FrozenSet[str]:
        relaxed = set()
        for bin_ in bins:
            if (
                constraints.max_tests_per_sub_suite is not None
                and len(bin_) > constraints.max_tests_per_sub_suite
            ):
                relaxed.add("max_tests_per_sub_suite")
            if (
                constraints.max_runtime_secs is not None
                and bin_.total > constraints.max_runtime_secs + _EPSILON
                and len(bin_) > 1
            ):
                relaxed.add("max_runtime_secs")
        return frozenset(relaxed)
