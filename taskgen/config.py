"""Layered YAML configuration.

Precedence, lowest first: built-in defaults, the YAML file, environment
variables (``TASKGEN__HISTORY__TIMEOUT_SECS=30``), then dotted CLI overrides
(``history.timeout_secs=30``).  Override values are parsed as YAML scalars so
``true``/``12``/``null`` keep their types.
"""
from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import yaml

from .errors import ConfigError

__all__ = ["Config", "deep_merge", "parse_override", "DEFAULT_ENV_PREFIX"]


DEFAULT_ENV_PREFIX = "TASKGEN"
_MISSING = object()


def deep_merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _set_dotted(target: Dict[str, Any], dotted: str, value: Any) -> None:
    parts = [part for part in dotted.split(".") if part]
    if not parts:
        raise ConfigError(f"empty configuration key: {dotted!r}")
    cur = target
    for part in parts[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[parts[-1]] = value


def _parse_scalar(raw: str) -> Any:
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def parse_override(text: str) -> Dict[str, Any]:
    """Parse a ``key=value`` CLI override into a one-entry mapping."""

    key, sep, value = text.partition("=")
    if not sep or not key.strip():
        raise ConfigError(f"override must look like key=value: {text!r}")
    return {key.strip(): _parse_scalar(value)}


class Config:
    def __init__(self, data: Mapping[str, Any], *, source: Optional[Path] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(data))
        self.source = source

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "Config":
        return cls(data or {})

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        *,
        defaults: Optional[Mapping[str, Any]] = None,
        env_prefix: Optional[str] = DEFAULT_ENV_PREFIX,
        cli_overrides: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        merged: Dict[str, Any] = copy.deepcopy(dict(defaults or {}))
        source: Optional[Path] = None
        if path is not None:
            source = Path(path).expanduser()
            try:
                with source.open("r", encoding="utf-8") as handle:
                    loaded = yaml.safe_load(handle)
            except FileNotFoundError as exc:
                raise ConfigError(f"configuration file not found: {source}") from exc
            except yaml.YAMLError as exc:
                raise ConfigError(f"configuration file {source} is not valid YAML: {exc}") from exc
            if loaded is None:
                loaded = {}
            if not isinstance(loaded, Mapping):
                raise ConfigError(f"configuration file {source} must contain a mapping")
            deep_merge(merged, loaded)
        if env_prefix:
            deep_merge(merged, cls._env_overrides(env_prefix, os.environ if environ is None else environ))
        for key, value in (cli_overrides or {}).items():
            _set_dotted(merged, key, value)
        return cls(merged, source=source)

    @staticmethod
    def _env_overrides(prefix: str, environ: Mapping[str, str]) -> Dict[str, Any]:
        marker = f"{prefix}__"
        overrides: Dict[str, Any] = {}
        for name in sorted(environ):
            if not name.startswith(marker):
                continue
            dotted = ".".join(part.lower() for part in name[len(marker):].split("__"))
            _set_dotted(overrides, dotted, _parse_scalar(environ[name]))
        return overrides

    def get(self, key: str, typ: type = object, default: Any = None, *, required: bool = False) -> Any:
        cur: Any = self._data
        for part in key.split("."):
            if isinstance(cur, Mapping) and part in cur:
                cur = cur[part]
            else:
                cur = _MISSING
                break
        if cur is _MISSING or cur is None:
            if required:
                raise ConfigError(f"missing required configuration key: {key}")
            return default
        if typ is object or isinstance(cur, typ):
            return cur
        if typ is bool and isinstance(cur, str):
            lowered = cur.strip().lower()
            if lowered in {"1", "true", "yes", "on"}:
                return True
            if lowered in {"0", "false", "no", "off"}:
                return False
            raise ConfigError(f"configuration key {key} must be a boolean (got {cur!r})")
        if typ in (int, float, str):
            try:
                return typ(cur)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"configuration key {key} must be {typ.__name__} (got {cur!r})") from exc
        raise ConfigError(f"configuration key {key} has incompatible type: {type(cur).__name__}")

    def section(self, key: str) -> Dict[str, Any]:
        value = self.get(key, dict, default={})
        return copy.deepcopy(value)

    def export(self, *, redact_secrets: bool = True) -> Dict[str, Any]:
        data = copy.deepcopy(self._data)
        if redact_secrets:
            _redact(data)
        return data

    def keys(self) -> Iterable[str]:
        return self._data.keys()


def _redact(data: Dict[str, Any]) -> None:
    for key, value in data.items():
        if isinstance(value, dict):
            _redact(value)
        elif any(marker in key.lower() for marker in ("key", "token", "password", "secret")) and value is not None:
            data[key] = "[REDACTED]"
