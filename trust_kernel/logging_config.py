"""
Structured JSON logging for the trust ledger kernel.

Every record is one JSON line.  Who acted on which matter travels in
``LogContext`` (contextvars, so it follows threads started per request and
asyncio tasks), and the formatter merges it into each record together with
the ``extra`` fields of the call:

    {"ts": "...", "level": "INFO", "logger": "trust_kernel.services.trust_ledger",
     "message": "transaction_recorded", "matter_id": "M-1", "actor_id": "bk-7",
     "actor_role": "standard", "transaction_id": "...", "sequence": 4,
     "amount": {"amount": "250.00", "currency": "USD"}, ...}

Money is always logged as an exact decimal string with its currency, never
as a float.  A TrustLedgerError attached via ``exc_info`` is logged as its
``to_dict()`` under ``error``.
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

from trust_kernel.domain.values import Money
from trust_kernel.exceptions import TrustLedgerError

_LOGGER_PREFIX = "trust_kernel"


# Context


class LogContext:
    """
    Request-scoped fields stamped on every record.

    ``matter_id``, ``actor_id`` and ``actor_role`` are bound for the whole
    of a ledger write; ``transaction_id`` and ``sequence`` once the entry
    exists; ``firm_account_id`` during firm reconciliation.
    """

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "trace_id",
        "firm_account_id",
        "matter_id",
        "actor_id",
        "actor_role",
        "transaction_id",
        "sequence",
    )

    _vars: dict[str, ContextVar[Any]] = {
        name: ContextVar(f"trust_log_{name}", default=None) for name in FIELDS
    }

    @classmethod
    def _var(cls, name: str) -> ContextVar[Any]:
        try:
            return cls._vars[name]
        except KeyError:
            raise TypeError(f"unknown log context field {name!r}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of the current context; None values are skipped."""
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                var.set(value)

    @classmethod
    def get_all(cls) -> dict[str, Any]:
        return {
            name: value
            for name, var in cls._vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """
        Set fields for the duration of a block, restoring the outer values.

        Raises:
            TypeError: If a field name is not one of ``FIELDS``.
        """
        tokens = []
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                tokens.append((var, var.set(value)))
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Formatting


_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _loggable(value: Any) -> Any:
    """Convert ledger values into JSON-safe structures."""
    if isinstance(value, Money):
        return {"amount": value.to_string(), "currency": value.currency.code}
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(_loggable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_loggable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _loggable(v) for k, v in value.items()}
    return value


def _error_fields(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, TrustLedgerError):
        error = exc.to_dict()
    else:
        error = {"message": str(exc)}
    error["type"] = type(exc).__name__
    return error


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: base fields, then context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = _error_fields(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(_loggable(payload), default=str)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``trust_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# Initialization

_installed_handler: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install the JSON handler on the ``trust_kernel`` logger.

    Only the first call takes effect until ``reset_logging()``.  Records do
    not propagate to the root logger, so host applications see trust ledger
    logs only through this handler.
    """
    global _installed_handler
    with _lock:
        if _installed_handler is not None:
            return
        installed = handler if handler is not None else logging.StreamHandler(
            stream or sys.stderr
        )
        installed.setFormatter(StructuredFormatter())

        ledger_logger = logging.getLogger(_LOGGER_PREFIX)
        ledger_logger.setLevel(level)
        ledger_logger.propagate = False
        ledger_logger.addHandler(installed)
        _installed_handler = installed


def reset_logging() -> None:
    """Remove the handler installed by configure_logging.  Used by tests."""
    global _installed_handler
    with _lock:
        ledger_logger = logging.getLogger(_LOGGER_PREFIX)
        if _installed_handler is not None:
            ledger_logger.removeHandler(_installed_handler)
            _installed_handler = None
        ledger_logger.setLevel(logging.WARNING)
        ledger_logger.propagate = True
