"""
costing_kernel.logging_config -- JSON-lines logging for the costing packages.

Every line is one JSON object: ``ts``, ``level``, ``logger`` and
``message`` (a snake_case event name), then whatever is bound in
LogContext, then the call's ``extra`` fields.  While a product is being
consumed ``product_id`` is bound, while a sale is posted ``sale_id`` is
bound, and inside a conflict retry ``attempt`` is bound, so the lines an
operation emits can be grouped without threading ids through every call.

Decimals are written as exact strings.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, TextIO

_ROOT_LOGGER = "costing_kernel"


class LogContext:
    """Fields stamped on every line logged inside ``bind``; async-safe."""

    _fields: ContextVar[dict[str, str]] = ContextVar("costing_log_fields", default={})

    @classmethod
    @contextmanager
    def bind(cls, **fields: object) -> Iterator[None]:
        """Add ``fields`` (stringified, None skipped) for the enclosed block."""
        merged = dict(cls._fields.get())
        merged.update((k, str(v)) for k, v in fields.items() if v is not None)
        token = cls._fields.set(merged)
        try:
            yield
        finally:
            cls._fields.reset(token)

    @classmethod
    def current(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _describe_error(exc: BaseException) -> dict[str, Any]:
    # CostingError subclasses carry a code plus their structured attributes
    error: dict[str, Any] = {"type": type(exc).__name__, "detail": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in error:
            error[name] = value
    return error


_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(LogContext.current())
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS and name not in line:
                line[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            line["error"] = _describe_error(record.exc_info[1])
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_json_value)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``costing_kernel.<name>``; all costing loggers share that root."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


class _JsonLinesHandler(logging.StreamHandler):
    """The handler configure_logging installs; marks the tree as configured."""


def configure_logging(*, level: int = logging.INFO, stream: TextIO | None = None) -> None:
    """
    Send the costing logger tree to ``stream`` (stderr) as JSON lines.

    Idempotent: once a JSON handler is attached, later calls change nothing.
    """
    root = logging.getLogger(_ROOT_LOGGER)
    if any(isinstance(h, _JsonLinesHandler) for h in root.handlers):
        return
    handler = _JsonLinesHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False


def reset_logging() -> None:
    """Detach the JSON handler and restore logging defaults; used by tests."""
    root = logging.getLogger(_ROOT_LOGGER)
    for handler in [h for h in root.handlers if isinstance(h, _JsonLinesHandler)]:
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)
    root.propagate = True
