"""Encoders for the generated configuration document.

The set of formats is closed: :class:`OutputFormat` lists every supported
flavour and :func:`codec_for` maps one to its encoder.
"""
from __future__ import annotations

import enum
import json
from typing import Any, Dict, Mapping, Union

import yaml

from .errors import EncodeError
from .task_graph import GENERATOR_DISPLAY_TASK, GeneratedConfig

__all__ = ["OutputFormat", "ConfigCodec", "JsonCodec", "YamlCodec", "codec_for", "validate_document"]


class OutputFormat(str, enum.Enum):
    JSON = "json"
    YAML = "yaml"

    @classmethod
    def parse(cls, value: Union[str, "OutputFormat"]) -> "OutputFormat":
        if isinstance(value, OutputFormat):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            raise ValueError(f"unsupported output format: {value!r}") from exc


def validate_document(document: Mapping[str, Any]) -> None:
    """Check the generated-tasks shape the orchestrator expects."""

    tasks = document.get("tasks")
    variants = document.get("buildvariants")
    if not isinstance(tasks, list) or not isinstance(variants, list):
        raise EncodeError("document requires 'tasks' and 'buildvariants' lists")
    names = set()
    for task in tasks:
        if not isinstance(task, Mapping) or not task.get("name"):
            raise EncodeError("every task needs a name")
        if not isinstance(task.get("commands"), list) or not task["commands"]:
            raise EncodeError(f"task {task['name']!r} has no commands")
        if task["name"] in names:
            raise EncodeError(f"task {task['name']!r} is defined twice")
        names.add(task["name"])
    for variant in variants:
        if not isinstance(variant, Mapping) or not variant.get("name"):
            raise EncodeError("every build variant needs a name")
        for ref in variant.get("tasks", []):
            if ref.get("name") not in names:
                raise EncodeError(f"build variant {variant['name']!r} references unknown task {ref.get('name')!r}")
        for display in variant.get("display_tasks", []):
            if display.get("name") == GENERATOR_DISPLAY_TASK:
                continue
            unknown = [name for name in display.get("execution_tasks", []) if name not in names]
            if unknown:
                raise EncodeError(f"display task {display.get('name')!r} references unknown tasks {unknown}")


class ConfigCodec:
    format: OutputFormat
    extension: str

    def encode(self, config: Union[GeneratedConfig, Mapping[str, Any]]) -> bytes:
        try:
            document = config.to_dict() if isinstance(config, GeneratedConfig) else dict(config)
        except Exception as exc:
            raise EncodeError(f"cannot convert configuration to a document: {exc}") from exc
        validate_document(document)
        try:
            return self._dump(document)
        except EncodeError:
            raise
        except Exception as exc:
            raise EncodeError(f"{self.format.value} encoding failed: {exc}") from exc

    def _dump(self, document: Dict[str, Any]) -> bytes:
        raise NotImplementedError


class JsonCodec(ConfigCodec):
    format = OutputFormat.JSON
    extension = ".json"

    def _dump(self, document: Dict[str, Any]) -> bytes:
        text = json.dumps(document, sort_keys=True, indent=2, ensure_ascii=False, allow_nan=False)
        return (text + "\n").encode("utf-8")


class YamlCodec(ConfigCodec):
    format = OutputFormat.YAML
    extension = ".yml"

    def _dump(self, document: Dict[str, Any]) -> bytes:
        return yaml.safe_dump(document, sort_keys=True, default_flow_style=False, allow_unicode=True).encode("utf-8")


_CODECS = {
    OutputFormat.JSON: JsonCodec,
    OutputFormat.YAML: YamlCodec,
}


def codec_for(output_format: Union[str, OutputFormat]) -> ConfigCodec:
    return _CODECS[OutputFormat.parse(output_format)]()
