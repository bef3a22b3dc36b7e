"""
Structured JSON logging for the audit chain.

Every record under the ``audit_chain`` logger is rendered as one JSON
object per line::

    {"ts": "...", "level": "INFO", "logger": "audit_chain.services.audit_appender",
     "message": "audit_block_created", "audit_id": "...", "block_number": 7, ...}

Fields come from three places, in this order of precedence:

1. the envelope (``ts``, ``level``, ``logger``, ``message``)
2. ``LogContext`` (request-scoped ids bound by the caller or the services)
3. ``extra={...}`` on the logging call

Exceptions logged with ``exc_info`` add ``exc_type``, ``exc_message``,
``exc_code`` (for ``AuditChainError``), one ``exc_<attr>`` per public
exception attribute, and ``traceback``.
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
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

LOGGER_NAMESPACE = "audit_chain"

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "producer",
    "audit_id",
    "verification_id",
    "trace_id",
)

_context: ContextVar[dict[str, str] | None] = ContextVar("audit_chain_log_context", default=None)


class LogContext:
    """
    Request-scoped fields attached to every log line.

    Backed by a ContextVar, so values are per thread and per asyncio task.
    Only the names in ``CONTEXT_FIELDS`` are accepted.
    """

    @staticmethod
    def _check(fields: dict[str, Any]) -> None:
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(unknown)}")

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set fields; None values leave the current value alone."""
        cls._check(fields)
        merged = dict(_context.get() or {})
        merged.update({k: v for k, v in fields.items() if v is not None})
        _context.set(merged)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get() or {})

    @classmethod
    def clear(cls) -> None:
        _context.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore."""
        cls._check(fields)
        merged = dict(_context.get() or {})
        merged.update({k: v for k, v in fields.items() if v is not None})
        token = _context.set(merged)
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                line.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            line.update(self._exception_fields(record))

        return json.dumps(line, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for attr, value in vars(exc).items():
            if not attr.startswith("_"):
                fields[f"exc_{attr}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger ``audit_chain.<name>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``audit_chain`` logger.

    Only the first call has an effect.  ``level`` may be a name such as
    ``"DEBUG"`` (as read from settings).  The package logger does not
    propagate to the root logger, so host applications keep their own
    formatting.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    package_logger = logging.getLogger(LOGGER_NAMESPACE)
    package_logger.setLevel(level)
    package_logger.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    package_logger.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``.  Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    package_logger = logging.getLogger(LOGGER_NAMESPACE)
    package_logger.handlers.clear()
    package_logger.setLevel(logging.WARNING)
