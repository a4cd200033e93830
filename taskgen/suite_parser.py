"""Load resmoke-style suite definitions into :class:`~taskgen.models.Suite`."""
from __future__ import annotations

import fnmatch
import glob
import math
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import InputError, RunWarning, WarningCode
from .logger import StructuredLogger
from .models import Suite, TaskDependency, TestFile

__all__ = ["SuiteDefinitionParser"]


logger = StructuredLogger.get_logger("taskgen.suite_parser")

_LIMIT_KEYS = {
    "max_sub_suites": int,
    "max_runtime_secs": float,
    "max_tests_per_sub_suite": int,
}
_GLOB_CHARS = set("*?[")


def _is_pattern(value: str) -> bool:
    return any(ch in _GLOB_CHARS for ch in value)


def _as_str_list(value: Any, field_name: str, suite: str, path: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise InputError(f"{field_name} must be a list of strings", suite=suite, path=path)
    return list(value)


class SuiteDefinitionParser:
    """Parse one suite file at a time.

    Patterns are resolved relative to ``test_root`` and the resulting paths are
    kept relative to it, using ``/`` separators.  Non-fatal findings (globs
    that matched nothing) accumulate on :attr:`warnings`.
    """

    def __init__(self, test_root: Union[str, Path] = ".") -> None:
        self.test_root = Path(test_root)
        self.warnings: List[RunWarning] = []

    def load(self, path: Union[str, Path]) -> Suite:
        source = Path(path)
        document = self._read(source)
        name = document.get("name") or source.stem
        if not isinstance(name, str) or not name:
            raise InputError("suite name must be a non-empty string", path=str(source))
        with logger.scoped(suite=name):
            return self._build(name, document, source)

    def _read(self, source: Path) -> Dict[str, Any]:
        try:
            with source.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle)
        except OSError as exc:
            raise InputError(f"cannot read suite definition: {exc}", path=str(source)) from exc
        except UnicodeDecodeError as exc:
            raise InputError(f"suite definition is not valid UTF-8: {exc}", path=str(source)) from exc
        except yaml.YAMLError as exc:
            raise InputError(f"invalid YAML in suite definition: {exc}", path=str(source)) from exc
        if not isinstance(document, dict):
            raise InputError("suite definition must be a mapping", path=str(source))
        return document

    def _build(self, name: str, document: Mapping[str, Any], source: Path) -> Suite:
        path = str(source)
        selector = document.get("selector")
        if not isinstance(selector, Mapping):
            raise InputError("suite definition requires a 'selector' mapping", suite=name, path=path)
        roots = _as_str_list(selector.get("roots"), "selector.roots", name, path)
        if not roots:
            raise InputError("selector.roots must list at least one test or pattern", suite=name, path=path)
        excludes = _as_str_list(selector.get("exclude_files"), "selector.exclude_files", name, path)
        tags = tuple(_as_str_list(document.get("tags"), "tags", name, path))
        generate = document.get("generate") or {}
        if not isinstance(generate, Mapping):
            raise InputError("'generate' must be a mapping", suite=name, path=path)

        paths = self._expand(roots, excludes, name)
        tests = [TestFile(test_path, position=index, tags=tags) for index, test_path in enumerate(paths)]
        use_large_distro = generate.get("use_large_distro")
        suite = Suite(
            name=name,
            tests=tests,
            tags=tags,
            depends_on=self._dependencies(document.get("depends_on"), name, path),
            limit_overrides=self._limits(generate, name, path),
            source_path=path,
            definition=dict(document),
            use_large_distro=bool(use_large_distro) if use_large_distro is not None else None,
        )
        logger.info("suite_parser.loaded", tests=len(tests), path=path)
        return suite

    def _expand(self, roots: List[str], excludes: List[str], suite: str) -> List[str]:
        seen = set()
        ordered: List[str] = []
        for root in roots:
            for candidate in self._resolve(root, suite):
                if candidate in seen or self._excluded(candidate, excludes):
                    continue
                seen.add(candidate)
                ordered.append(candidate)
        return ordered

    def _resolve(self, root: str, suite: str) -> List[str]:
        normalized = root.replace("\\", "/")
        if not _is_pattern(normalized):
            return [normalized]
        base = str(self.test_root)
        matches = sorted(
            os.path.relpath(match, base).replace(os.sep, "/")
            for match in glob.glob(os.path.join(base, normalized), recursive=True)
            if os.path.isfile(match)
        )
        if not matches:
            logger.warning("suite_parser.empty_pattern", pattern=root)
            self.warnings.append(
                RunWarning(
                    code=WarningCode.EMPTY_PATTERN,
                    message=f"pattern {root!r} matched no files",
                    suite=suite,
                    details={"pattern": root},
                )
            )
        return matches

    @staticmethod
    def _excluded(candidate: str, excludes: List[str]) -> bool:
        return any(fnmatch.fnmatchcase(candidate, pattern.replace("\\", "/")) for pattern in excludes)

    @staticmethod
    def _dependencies(raw: Any, suite: str, path: str) -> Tuple[TaskDependency, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise InputError("depends_on must be a list", suite=suite, path=path)
        deps = []
        for entry in raw:
            if isinstance(entry, str):
                deps.append(TaskDependency(entry))
            elif isinstance(entry, Mapping) and isinstance(entry.get("name"), str):
                variant = entry.get("variant")
                deps.append(TaskDependency(entry["name"], str(variant) if variant else None))
            else:
                raise InputError("depends_on entries need a task name", suite=suite, path=path)
        return tuple(deps)

    @staticmethod
    def _limits(generate: Mapping[str, Any], suite: str, path: str) -> Dict[str, Any]:
        limits: Dict[str, Any] = {}
        for key, typ in _LIMIT_KEYS.items():
            value: Optional[Any] = generate.get(key)
            if value is None:
                continue
            if isinstance(value, bool):
                raise InputError(f"generate.{key} must be a number", suite=suite, path=path)
            try:
                coerced = typ(value)
            except (TypeError, ValueError, OverflowError) as exc:
                raise InputError(f"generate.{key} must be a number", suite=suite, path=path) from exc
            if not math.isfinite(coerced):
                raise InputError(f"generate.{key} must be finite", suite=suite, path=path)
            if coerced <= 0:
                raise InputError(f"generate.{key} must be positive", suite=suite, path=path)
            limits[key] = coerced
        return limits
