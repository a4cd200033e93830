"""Command line entry point: ``taskgen generate ...``."""
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence

from . import __version__
from .codec import OutputFormat, codec_for
from .config import Config, parse_override
from .errors import ConfigError, EncodeError, TaskGenError
from .history import EvergreenHistoryProvider, FileHistoryProvider, HistoryProvider
from .logger import StructuredLogger
from .orchestrator import TaskGenerator, write_outputs
from .settings import DEFAULTS, GeneratorSettings

__all__ = ["main", "build_parser"]

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

# CLI flag -> dotted configuration key
_FLAG_KEYS = {
    "variant": "generate.build_variant",
    "project": "history.project",
    "output": "generate.output_path",
    "format": "generate.output_format",
    "max_sub_suites": "split.max_sub_suites",
    "max_runtime_secs": "split.max_runtime_secs",
    "max_tests_per_sub_suite": "split.max_tests_per_sub_suite",
    "history_file": "history.history_file",
    "test_root": "generate.test_root",
    "suite_config_dir": "generate.suite_config_dir",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskgen", description="Generate balanced CI sub-suite tasks")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Split suites into generated tasks")
    generate.add_argument("--config", default=None, help="Path to the YAML configuration")
    generate.add_argument("--suite", action="append", required=True, dest="suites", help="Suite definition file (repeatable)")
    generate.add_argument("--variant", default=None, help="Build variant to generate tasks for")
    generate.add_argument("--project", default=None, help="Project used for history queries")
    generate.add_argument("--output", default=None, help="Output file, '-' for stdout")
    generate.add_argument("--format", choices=[fmt.value for fmt in OutputFormat], default=None)
    generate.add_argument("--max-sub-suites", type=int, default=None)
    generate.add_argument("--max-runtime-secs", type=float, default=None)
    generate.add_argument("--max-tests-per-sub-suite", type=int, default=None)
    generate.add_argument("--history-file", default=None, help="JSON history document for offline runs")
    generate.add_argument("--test-root", default=None, help="Directory test patterns are resolved against")
    generate.add_argument("--suite-config-dir", default=None, help="Where to write generated resmoke suite files")
    generate.add_argument("--set", action="append", default=[], dest="overrides", metavar="KEY=VALUE")
    generate.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for text in args.overrides:
        overrides.update(parse_override(text))
    for attr, key in _FLAG_KEYS.items():
        value = getattr(args, attr)
        if value is not None:
            overrides[key] = value
    if args.no_progress:
        overrides["progress"] = False
    return overrides


def _provider(settings: GeneratorSettings) -> Optional[HistoryProvider]:
    history = settings.history
    if history.history_file is not None:
        return FileHistoryProvider(history.history_file)
    if history.base_url:
        return EvergreenHistoryProvider(history.base_url, api_user=history.api_user, api_key=history.api_key)
    return None


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = Config.load(args.config, defaults=DEFAULTS, cli_overrides=_overrides(args))
        settings = GeneratorSettings.from_config(cfg)
        StructuredLogger.configure_from_mapping(settings.logger, app={"name": "taskgen", "version": __version__})
    except (ConfigError, TypeError, ValueError) as exc:
        print(f"taskgen: configuration error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    logger = StructuredLogger.get_logger("taskgen.cli")
    logger.debug("cli.config", config=cfg.export(redact_secrets=True))
    provider = _provider(settings)
    try:
        generator = TaskGenerator(settings, provider)
        result = generator.run(args.suites)
        for warning in result.warnings:
            logger.warning("cli.run_warning", **warning.to_dict())
        if result.failed_suites and not result.plans:
            logger.error("cli.all_suites_failed", failed=result.failed_suites)
            return EXIT_FAILURE
        codec = codec_for(settings.generate.output_format)
        output = settings.generate.output_path or "-"
        written = write_outputs(result, codec, output, settings.generate.suite_config_dir)
    except ConfigError as exc:
        print(f"taskgen: configuration error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except EncodeError as exc:
        logger.error("cli.encode_failed", exc=exc, error=str(exc))
        return EXIT_FAILURE
    except TaskGenError as exc:
        logger.exception("cli.failed", exc)
        return EXIT_FAILURE
    except OSError as exc:
        logger.error("cli.write_failed", exc=exc, error=str(exc))
        return EXIT_FAILURE
    finally:
        close = getattr(provider, "close", None)
        if close is not None:
            close()
    logger.info(
        "cli.complete",
        tasks=len(result.config.tasks),
        files=[str(path) for path in written],
        warnings=len(result.warnings),
    )
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
