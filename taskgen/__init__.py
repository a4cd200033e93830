"""Generate balanced, parallel CI sub-suite tasks from historical test runtimes."""
from __future__ import annotations

__version__ = "0.1.0"

from .codec import OutputFormat, codec_for
from .config import Config
from .errors import (
    ConfigError,
    EncodeError,
    HistoryFetchError,
    HistoryNotFoundError,
    HistoryTimeoutError,
    InputError,
    PartitionInvariantError,
    RunWarning,
    TaskGenError,
    WarningCode,
)
from .estimator import EstimationResult, RuntimeEstimator
from .fetcher import FetchPolicy, FetchRequest, HistoryFetcher
from .history import EvergreenHistoryProvider, FileHistoryProvider, HistoryProvider
from .logger import StructuredLogger
from .models import GeneratedSuite, HistoryRecord, RuntimeEstimate, SubSuite, Suite, SuiteLimits, TestFile
from .orchestrator import GenerationResult, TaskGenerator, write_outputs
from .partitioner import PartitionConstraints, PartitionPlan, SuitePartitioner
from .settings import GeneratorSettings
from .suite_parser import SuiteDefinitionParser
from .task_graph import GeneratedConfig, TaskGraphBuilder

__all__ = [
    "__version__",
    "Config",
    "ConfigError",
    "EncodeError",
    "EstimationResult",
    "EvergreenHistoryProvider",
    "FetchPolicy",
    "FetchRequest",
    "FileHistoryProvider",
    "GeneratedConfig",
    "GeneratedSuite",
    "GenerationResult",
    "GeneratorSettings",
    "HistoryFetchError",
    "HistoryFetcher",
    "HistoryNotFoundError",
    "HistoryProvider",
    "HistoryRecord",
    "HistoryTimeoutError",
    "InputError",
    "OutputFormat",
    "PartitionConstraints",
    "PartitionInvariantError",
    "PartitionPlan",
    "RunWarning",
    "RuntimeEstimate",
    "RuntimeEstimator",
    "StructuredLogger",
    "SubSuite",
    "Suite",
    "SuiteDefinitionParser",
    "SuiteLimits",
    "SuitePartitioner",
    "TaskGenError",
    "TaskGenerator",
    "TaskGraphBuilder",
    "TestFile",
    "WarningCode",
    "codec_for",
    "write_outputs",
]
