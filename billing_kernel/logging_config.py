"""
Structured JSON logging for the billing kernel.

Every record is written as one JSON object: timestamp, level, logger and
message, then the request-scoped fields held in ``LogContext``, then
whatever the call site passed through ``extra=``.  An exception attached
with ``exc_info`` adds its type, message, error code and any public
attributes (``BillingError`` subclasses carry ids and amounts there).

Loggers live under the ``billing_kernel`` namespace and do not propagate
to the root logger.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

LOGGER_NAMESPACE = "billing_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "payment_id",
    "tenant_id",
    "invoice_id",
    "actor_id",
    "trace_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"billing_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise ValueError(f"Unknown log context field: {name}") from None


class LogContext:
    """Request-scoped log fields, held in context variables."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Set the given fields; a None value leaves that field unchanged."""
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the ``with`` block and restore the previous values after it."""
        tokens = [
            (var, var.set(str(value)))
            for name, value in fields.items()
            if value is not None
            for var in (_context_var(name),)
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    # UUID, Decimal and anything else without a JSON type
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON line per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the namespace logger; repeat calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        namespace_logger = logging.getLogger(LOGGER_NAMESPACE)
        namespace_logger.setLevel(level)
        namespace_logger.propagate = False
        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        namespace_logger.addHandler(target)
        _configured = True


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again. For tests."""
    global _configured
    with _lock:
        _configured = False
        namespace_logger = logging.getLogger(LOGGER_NAMESPACE)
        namespace_logger.handlers.clear()
        namespace_logger.setLevel(logging.WARNING)
