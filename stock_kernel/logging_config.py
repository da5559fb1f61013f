"""
Structured JSON logging for the stock kernel.

Every record under the ``stock_kernel`` logger becomes one JSON line.  The
line carries the scope fields bound through :class:`LogContext` (invoice,
warehouse, item, actor) so a settlement or a maintenance pass can be
followed across services without threading ids through every call.

Extras passed with ``logger.info("event", extra={...})`` are copied into
the payload.  Exceptions raised by the kernel expose their public
attributes as ``exc_<name>`` fields.
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
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

ROOT_LOGGER_NAME = "stock_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "invoice_id",
    "warehouse_id",
    "item_id",
    "trace_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_scope: ContextVar[Mapping[str, str]] = ContextVar("stock_log_scope", default=_EMPTY)


def _coerce(fields: Mapping[str, Any]) -> dict[str, str]:
    """Keep known, non-None fields and render them as strings."""
    return {
        name: str(value)
        for name, value in fields.items()
        if name in CONTEXT_FIELDS and value is not None
    }


class LogContext:
    """
    Scope fields attached to every log line emitted in the current context.

    Backed by a single ContextVar holding a read-only mapping, so threads
    and asyncio tasks each see their own scope.  Unknown field names are
    ignored.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge fields into the current scope. None values are skipped."""
        _scope.set(MappingProxyType({**_scope.get(), **_coerce(fields)}))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_scope.get())

    @staticmethod
    def clear() -> None:
        _scope.set(_EMPTY)

    @staticmethod
    def bind(**fields: Any) -> "_ScopedFields":
        """Context manager: merge fields on entry, restore the prior scope on exit."""
        return _ScopedFields(fields)


class _ScopedFields:

    def __init__(self, fields: Mapping[str, Any]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        merged = {**_scope.get(), **_coerce(self._fields)}
        self._token = _scope.set(MappingProxyType(merged))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _scope.reset(self._token)
            self._token = None


# Attributes every LogRecord carries; anything else on a record is an extra.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name in ("args", "code"):
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, scope, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_scope.get(),
        }

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        }
        payload.update(extras)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``stock_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_state_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install the JSON handler on the ``stock_kernel`` logger.

    Idempotent: the first call wins.
    """
    global _handler
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _state_lock:
        if _handler is not None:
            return
        root.setLevel(level)
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        root.addHandler(_handler)
        root.propagate = False


def reset_logging() -> None:
    """Remove the installed handler. Used by the test suite."""
    global _handler
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _state_lock:
        if _handler is not None:
            root.removeHandler(_handler)
            _handler = None
        root.setLevel(logging.WARNING)
