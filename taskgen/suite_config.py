"""Resmoke suite files for generated sub-suites."""
from __future__ import annotations

import copy
from collections import OrderedDict
from typing import Any, Dict, Iterable, Mapping

import yaml

from .errors import EncodeError
from .models import GeneratedSuite

__all__ = ["render_suite_files", "sub_suite_definition", "misc_suite_definition"]

# Keys consumed by the generator itself; resmoke does not know them.
_GENERATOR_KEYS = ("name", "generate", "depends_on", "tags")


def _base_definition(definition: Mapping[str, Any]) -> Dict[str, Any]:
    base = copy.deepcopy(dict(definition))
    for key in _GENERATOR_KEYS:
        base.pop(key, None)
    selector = base.get("selector")
    base["selector"] = dict(selector) if isinstance(selector, Mapping) else {}
    return base


def sub_suite_definition(definition: Mapping[str, Any], tests: Iterable[str]) -> Dict[str, Any]:
    base = _base_definition(definition)
    base["selector"]["roots"] = list(tests)
    base["selector"].pop("exclude_files", None)
    return base


def misc_suite_definition(definition: Mapping[str, Any], generated_tests: Iterable[str]) -> Dict[str, Any]:
    base = _base_definition(definition)
    excludes = list(base["selector"].get("exclude_files") or [])
    seen = set(excludes)
    for test in generated_tests:
        if test not in seen:
            seen.add(test)
            excludes.append(test)
    base["selector"]["exclude_files"] = excludes
    return base


def _dump(document: Mapping[str, Any], filename: str) -> bytes:
    try:
        return yaml.safe_dump(dict(document), default_flow_style=False, sort_keys=False).encode("utf-8")
    except yaml.YAMLError as exc:
        raise EncodeError(f"cannot encode suite file {filename}: {exc}") from exc


def render_suite_files(generated: GeneratedSuite) -> "OrderedDict[str, bytes]":
    """Return ``{filename: contents}`` for every task of ``generated``."""

    files: "OrderedDict[str, bytes]" = OrderedDict()
    definition = generated.suite.definition
    for sub in generated.sub_suites:
        filename = f"{sub.name}.yml"
        files[filename] = _dump(sub_suite_definition(definition, sub.test_paths()), filename)
    if generated.misc_name is not None:
        filename = f"{generated.misc_name}.yml"
        files[filename] = _dump(misc_suite_definition(definition, generated.all_test_paths()), filename)
    return files
