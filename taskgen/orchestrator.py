"""End-to-end generation run: parse, fetch, estimate, partition, build."""
from __future__ import annotations

import datetime as _dt
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple, Union

from .codec import ConfigCodec
from .errors import ConfigError, InputError, RunWarning, WarningCode
from .estimator import EstimationResult, RuntimeEstimator
from .fetcher import FetchEvents, FetchOutcome, FetchPolicy, FetchRequest, HistoryFetcher, failed_suites
from .history import HistoryProvider
from .logger import StructuredLogger
from .models import Suite, TestFile
from .partitioner import PartitionConstraints, PartitionPlan, SuitePartitioner
from .progress import ProgressController
from .settings import GeneratorSettings
from .suite_config import render_suite_files
from .suite_parser import SuiteDefinitionParser
from .task_graph import GeneratedConfig, TaskGraphBuilder

__all__ = ["TaskGenerator", "GenerationResult", "write_outputs"]


logger = StructuredLogger.get_logger("taskgen.orchestrator")


@dataclass
class GenerationResult:
    config: GeneratedConfig
    plans: Dict[str, PartitionPlan[TestFile]] = field(default_factory=dict)
    estimates: Dict[str, EstimationResult] = field(default_factory=dict)
    warnings: List[RunWarning] = field(default_factory=list)
    failed_suites: List[str] = field(default_factory=list)

    @property
    def succeeded_suites(self) -> List[str]:
        return list(self.plans)

    def warnings_for(self, suite: str) -> List[RunWarning]:
        return [warning for warning in self.warnings if warning.suite == suite]


class TaskGenerator:
    """Wire the collaborators of one generation run together.

    ``provider`` may be ``None`` for offline runs; every test then takes the
    cold-start path.
    """

    def __init__(
        self,
        settings: GeneratorSettings,
        provider: Optional[HistoryProvider] = None,
        parser: Optional[SuiteDefinitionParser] = None,
        *,
        variant: Optional[str] = None,
        project: Optional[str] = None,
    ) -> None:
        self._settings = settings
        self._provider = provider
        self._parser = parser or SuiteDefinitionParser(settings.generate.test_root)
        self._variant = variant or settings.generate.build_variant
        self._project = project or settings.history.project
        if not self._variant:
            raise ConfigError("a build variant is required (generate.build_variant or --variant)")
        self._estimator = RuntimeEstimator(settings.estimator)
        self._partitioner = SuitePartitioner()

    def run(self, suite_paths: Sequence[Union[str, Path]]) -> GenerationResult:
        warnings: List[RunWarning] = []
        failed: List[str] = []
        suites = self._load_suites(suite_paths, warnings, failed)
        outcomes = self._fetch_history(suites)

        builder = TaskGraphBuilder(self._settings.generate, self._variant)
        plans: Dict[str, PartitionPlan[TestFile]] = {}
        estimates: Dict[str, EstimationResult] = {}
        for suite in suites:
            with logger.scoped(suite=suite.name, variant=self._variant):
                outcome = outcomes.get(suite.name)
                estimation, plan = self._plan_suite(suite, outcome, warnings)
            estimates[suite.name] = estimation
            plans[suite.name] = plan
            builder.add_suite(builder.generated_suite(suite, plan))
        for fuzzer in self._settings.fuzzers:
            builder.add_fuzzer(fuzzer)

        config = builder.build()
        logger.info(
            "orchestrator.done",
            suites=len(plans),
            failed=len(failed),
            tasks=len(config.tasks),
            warnings=len(warnings),
        )
        return GenerationResult(
            config=config,
            plans=plans,
            estimates=estimates,
            warnings=warnings,
            failed_suites=failed,
        )

    def _load_suites(
        self,
        suite_paths: Sequence[Union[str, Path]],
        warnings: List[RunWarning],
        failed: List[str],
    ) -> List[Suite]:
        suites: List[Suite] = []
        names = set()
        for path in suite_paths:
            try:
                suite = self._parser.load(path)
                if suite.name in names:
                    raise InputError(f"suite {suite.name!r} is listed more than once", suite=suite.name, path=str(path))
            except InputError as exc:
                name = exc.suite or Path(path).stem
                logger.error("orchestrator.suite_input_error", suite=name, path=str(path), error=str(exc))
                warnings.append(
                    RunWarning(
                        code=WarningCode.SUITE_INPUT_ERROR,
                        message=str(exc),
                        suite=name,
                        details={"path": str(path)},
                    )
                )
                failed.append(name)
                continue
            names.add(suite.name)
            suites.append(suite)
        warnings.extend(self._parser.warnings)
        self._parser.warnings = []
        return suites

    def _fetch_history(self, suites: Sequence[Suite]) -> Dict[str, FetchOutcome]:
        if not suites or self._provider is None:
            return {}
        history = self._settings.history
        lookback = _dt.timedelta(days=history.lookback_days)
        requests = [
            FetchRequest(suite=suite.name, project=self._project, variant=self._variant, lookback=lookback)
            for suite in suites
        ]
        policy = FetchPolicy(
            max_workers=history.max_workers,
            per_fetch_timeout=history.timeout_secs,
            deadline=history.deadline_secs,
        )
        enabled = None if self._settings.progress else False
        with ProgressController(len(requests), "history", enabled=enabled) as progress:
            events = FetchEvents(
                on_success=lambda outcome: progress.advance(),
                on_failure=lambda outcome: progress.advance(),
            )
            outcomes = HistoryFetcher(self._provider, policy, events).fetch_all(requests)
        failures = failed_suites(outcomes)
        if failures:
            logger.warning("orchestrator.history_failures", suites=failures)
        return outcomes

    def _plan_suite(
        self,
        suite: Suite,
        outcome: Optional[FetchOutcome],
        warnings: List[RunWarning],
    ) -> Tuple[EstimationResult, PartitionPlan[TestFile]]:
        records: Sequence = ()
        if outcome is None:
            warnings.append(
                RunWarning(
                    code=WarningCode.HISTORY_UNAVAILABLE,
                    message="no history provider configured",
                    suite=suite.name,
                )
            )
        elif not outcome.ok:
            warnings.append(
                RunWarning(
                    code=WarningCode.HISTORY_FETCH_FAILED,
                    message=str(outcome.error),
                    suite=suite.name,
                    details={"error_type": type(outcome.error).__name__},
                )
            )
        else:
            records = outcome.records

        estimation = self._estimator.estimate(suite.tests, records, suite=suite.name)
        estimation.attach(suite.tests)
        warnings.extend(estimation.warnings)

        limits = self._settings.split.limits().merged(suite.limit_overrides)
        constraints = PartitionConstraints.from_limits(limits)
        plan = self._partitioner.partition(
            [(test, test.estimate.runtime_secs) for test in suite.tests],
            constraints,
        )
        if plan.relaxed:
            warnings.append(
                RunWarning(
                    code=WarningCode.CONSTRAINTS_RELAXED,
                    message=f"relaxed {', '.join(sorted(plan.relaxed))} to place every test",
                    suite=suite.name,
                    details={"relaxed": sorted(plan.relaxed), "forced_tests": len(plan.forced_items)},
                )
            )
        logger.info(
            "orchestrator.suite_planned",
            tests=len(suite.tests),
            sub_suites=len(plan.bins),
            makespan=round(plan.makespan, 3),
        )
        return estimation, plan


def _write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with tmp_path.open("wb") as fh:
            fh.write(payload)
        os.replace(tmp_path, path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def write_outputs(
    result: GenerationResult,
    codec: ConfigCodec,
    output: Union[str, Path],
    suite_config_dir: Optional[Union[str, Path]] = None,
    *,
    stdout: Optional[BinaryIO] = None,
) -> List[Path]:
    """Encode everything first, then write; nothing is written on EncodeError.

    ``output`` of ``-`` writes the document to ``stdout``.
    """

    document = codec.encode(result.config)
    suite_files: Dict[str, bytes] = {}
    if suite_config_dir is not None:
        for generated in result.config.suites:
            suite_files.update(render_suite_files(generated))

    written: List[Path] = []
    if suite_config_dir is not None:
        directory = Path(suite_config_dir)
        for filename, payload in suite_files.items():
            target = directory / filename
            _write_atomic(target, payload)
            written.append(target)
    if str(output) == "-":
        stream = stdout or sys.stdout.buffer
        stream.write(document)
        stream.flush()
    else:
        target = Path(output)
        _write_atomic(target, document)
        written.append(target)
    logger.info("orchestrator.written", files=len(written), bytes=len(document))
    return written
