#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Structured Logging Service
-----------------------------

JSON-lines logging for the task generator.

* Every call names an *event* (``"fetcher.suite_failed"``) and passes fields
  as keyword arguments; the formatter renders one JSON object per line.
* Context propagation with bind/unbind semantics using ``contextvars`` so
  that everything logged while a suite is processed carries ``suite=...``.
* Sinks: console, rotating file, and an in-memory sink for tests.
* Secret-looking fields are redacted and oversized payloads summarised.
"""
from __future__ import annotations

import contextlib
import contextvars
import datetime as _dt
import hashlib
import json
import logging
import logging.handlers
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

__all__ = [
    "StructuredLogger",
    "StructuredJSONFormatter",
    "MemorySinkHandler",
    "SinkFactory",
]


_SECRET_MARKERS = ("secret", "password", "token", "api_key", "credential", "auth")
_STANDARD_FIELDS = (
    "suite",
    "variant",
    "task",
    "test",
    "duration_ms",
)
_MAX_TEXT = 1024
_MAX_ITEMS = 64


def _coerce_level(level: Union[str, int, None]) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        lvl = logging.getLevelName(level.upper())
        if isinstance(lvl, int):
            return lvl
    raise ValueError(f"invalid logging level: {level!r}")


def _utc_iso(dt: _dt.datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_dt.timezone.utc)
    return dt.astimezone(_dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _digest(value: Union[str, bytes]) -> str:
    if isinstance(value, str):
        value = value.encode("utf-8", errors="ignore")
    return hashlib.sha256(value).hexdigest()


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _sanitize(key: str, value: Any, *, depth: int = 0) -> Any:
    if _is_secret(key):
        return "[REDACTED]"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, _dt.datetime):
        return _utc_iso(value)
    if isinstance(value, (_dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if isinstance(value, str):
        if len(value) > _MAX_TEXT:
            return {"__summary__": f"str[{len(value)}]", "sha256": _digest(value)}
        return value
    if depth >= 4:
        return repr(value)
    if isinstance(value, Mapping):
        return {str(k): _sanitize(str(k), v, depth=depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        seq = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else list(value)
        if len(seq) > _MAX_ITEMS:
            head = json.dumps(seq[:32], default=repr)
            return {"__summary__": f"{type(value).__name__}[len={len(seq)}]", "sha256": _digest(head)}
        return [_sanitize(key, item, depth=depth + 1) for item in seq]
    return repr(value)


class StructuredJSONFormatter(logging.Formatter):
    def __init__(self, *, app_info: Optional[Mapping[str, Any]] = None, ensure_ascii: bool = False) -> None:
        super().__init__()
        self._app_info = dict(app_info or {})
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        created = _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc)
        entry: Dict[str, Any] = {
            "ts": _utc_iso(created),
            "level": record.levelname,
            "event": getattr(record, "_structured_event", record.getMessage()),
            "logger": record.name,
        }
        standard = getattr(record, "_structured_standard", {})
        for name in _STANDARD_FIELDS:
            if standard.get(name) is not None:
                entry[name] = standard[name]
        entry["extras"] = getattr(record, "_structured_extras", {})
        if self._app_info:
            entry["app"] = self._app_info
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stack": self.formatException(record.exc_info),
            }
        return json.dumps(entry, ensure_ascii=self._ensure_ascii, default=repr)


class MemorySinkHandler(logging.Handler):
    """In-memory sink for unit tests."""

    def __init__(self, name: str):
        super().__init__()
        self.name = name
        self.records: List[str] = []
        self.is_memory_sink = True

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))

    def events(self) -> List[Dict[str, Any]]:
        return [json.loads(line) for line in self.records]


class SinkFactory:
    @staticmethod
    def create(sink_cfg: Union[str, Mapping[str, Any]]) -> logging.Handler:
        if isinstance(sink_cfg, str):
            sink_cfg = {"type": sink_cfg}
        if not isinstance(sink_cfg, Mapping):
            raise TypeError("sink configuration must be mapping or string")
        sink_type = str(sink_cfg.get("type", "console")).lower()
        handler: logging.Handler
        if sink_type == "console":
            stream = sink_cfg.get("stream", "stderr")
            handler = logging.StreamHandler(stream=sys.stdout if stream == "stdout" else sys.stderr)
        elif sink_type == "rotating_file":
            path = sink_cfg.get("path")
            if not path:
                raise ValueError("rotating_file sink requires 'path'")
            Path(path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                path,
                maxBytes=int(sink_cfg.get("max_bytes", 10 * 1024 * 1024)),
                backupCount=int(sink_cfg.get("backups", 5)),
                encoding="utf-8",
            )
        elif sink_type == "memory":
            handler = MemorySinkHandler(name=str(sink_cfg.get("name", "memory")))
        else:
            raise ValueError(f"unsupported sink type: {sink_type}")
        level = sink_cfg.get("level")
        if level is not None:
            handler.setLevel(_coerce_level(level))
        return handler


class StructuredLogger:
    _context: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar("taskgen_log_context", default={})
    _lock = threading.RLock()
    _configured = False
    _root_name = "taskgen"
    _memory_sinks: Dict[str, MemorySinkHandler] = {}

    def __init__(self, name: str = "app") -> None:
        self._name = name

    @classmethod
    def get_logger(cls, name: str) -> "StructuredLogger":
        prefix = "taskgen."
        if name.startswith(prefix):
            name = name[len(prefix):]
        return cls(name)

    # -------------------- configuration --------------------
    @classmethod
    def _root(cls) -> logging.Logger:
        if not cls._configured:
            cls.configure()
        return logging.getLogger(cls._root_name)

    @classmethod
    def configure(
        cls,
        *,
        sinks: Optional[Sequence[Union[str, Mapping[str, Any]]]] = None,
        level: Union[str, int, None] = None,
        app: Optional[Mapping[str, Any]] = None,
        namespace: str = "taskgen",
    ) -> None:
        with cls._lock:
            previous = logging.getLogger(cls._root_name)
            for handler in list(previous.handlers):
                previous.removeHandler(handler)
                with contextlib.suppress(Exception):
                    handler.close()
            cls._root_name = namespace
            root = logging.getLogger(namespace)
            root.setLevel(_coerce_level(level))
            root.propagate = False
            cls._memory_sinks.clear()

            formatter = StructuredJSONFormatter(app_info=app)
            for sink in sinks or [{"type": "console", "stream": "stderr"}]:
                handler = SinkFactory.create(sink)
                handler.setFormatter(formatter)
                root.addHandler(handler)
                if isinstance(handler, MemorySinkHandler):
                    cls._memory_sinks[handler.name] = handler
            cls._configured = True

    @classmethod
    def configure_from_mapping(cls, cfg: Optional[Mapping[str, Any]], *, app: Optional[Mapping[str, Any]] = None) -> None:
        """Apply the ``logger:`` section of a loaded configuration."""

        cfg = cfg or {}
        cls.configure(
            sinks=cfg.get("sinks"),
            level=cfg.get("level"),
            app=app,
            namespace=str(cfg.get("namespace", "taskgen")),
        )

    # -------------------- context management --------------------
    @classmethod
    def reset_context(cls) -> None:
        cls._context.set({})

    def bind(self, **context: Any) -> "StructuredLogger":
        current = dict(self._context.get() or {})
        current.update(context)
        self._context.set(current)
        return self

    def unbind(self, *keys: str) -> "StructuredLogger":
        current = dict(self._context.get() or {})
        for key in keys:
            current.pop(key, None)
        self._context.set(current)
        return self

    @classmethod
    @contextlib.contextmanager
    def scoped(cls, **context: Any):
        """Bind ``context`` for the duration of a ``with`` block."""

        token = cls._context.set({**(cls._context.get() or {}), **context})
        try:
            yield
        finally:
            cls._context.reset(token)

    # -------------------- logging primitives --------------------
    def _log(
        self,
        level: int,
        event: str,
        *,
        exc_info: Optional[Tuple[type, BaseException, Any]] = None,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if not event:
            raise ValueError("event must be non-empty")
        target = self._root().getChild(self._name)
        if not target.isEnabledFor(level):
            return
        combined: Dict[str, Any] = dict(self._context.get() or {})
        combined.update(fields or {})
        extras = {key: _sanitize(key, value) for key, value in combined.items()}
        standard = {name: extras.pop(name) for name in _STANDARD_FIELDS if name in extras}
        target.log(
            level,
            event,
            extra={
                "_structured_event": event,
                "_structured_extras": extras,
                "_structured_standard": standard,
            },
            exc_info=exc_info,
            stacklevel=3,
        )

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields=fields)

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields=fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields=fields)

    def error(self, event: str, **fields: Any) -> None:
        exc = fields.pop("exc", None)
        exc_info = None
        if isinstance(exc, BaseException):
            exc_info = (type(exc), exc, exc.__traceback__)
        self._log(logging.ERROR, event, fields=fields, exc_info=exc_info)

    def exception(self, event: str, exc: BaseException, **fields: Any) -> None:
        fields = dict(fields)
        fields.setdefault("error_type", type(exc).__name__)
        fields.setdefault("error_message", str(exc))
        self._log(logging.ERROR, event, fields=fields, exc_info=(type(exc), exc, exc.__traceback__))

    # -------------------- diagnostics --------------------
    @classmethod
    def get_memory_sink(cls, name: str = "memory") -> Optional[MemorySinkHandler]:
        return cls._memory_sinks.get(name)
