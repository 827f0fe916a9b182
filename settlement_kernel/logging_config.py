"""
Structured logging (``settlement_kernel.logging_config``).

Responsibility
--------------
Writes every record under the ``settlement`` logger namespace as one JSON
object per line, with the current payment session's ids attached.

Architecture position
---------------------
**Kernel**.  Imported by every other layer through ``get_logger``.  Imports
only the kernel's exception base.

Invariants enforced
-------------------
* Only ``session_id`` and ``customer_id`` can be bound; anything else is a
  programming error and raises ``ValueError``.
* ``Decimal`` values are written as plain fixed-point strings, never as
  floats or in exponent form.
* Enum members (edit statuses, validation failures, cash modes) are
  written by value; dataclasses (``EditResult``, outcomes) as objects.
* A ``SettlementError`` on a record contributes ``error_code`` and its
  structured attributes as ``error_<name>`` fields.

Failure modes
-------------
* Values the encoder does not know are written with ``repr``; a log call
  never raises because of its payload.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from settlement_kernel.exceptions import SettlementError

__all__ = [
    "SESSION_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

NAMESPACE = "settlement"

SESSION_FIELDS = ("session_id", "customer_id")

_bound: ContextVar[tuple[tuple[str, str], ...]] = ContextVar(
    "settlement_log_fields", default=(),
)


# ---------------------------------------------------------------------------
# Session context
# ---------------------------------------------------------------------------


def _merged(**fields: str | None) -> tuple[tuple[str, str], ...]:
    unknown = sorted(set(fields) - set(SESSION_FIELDS))
    if unknown:
        raise ValueError(f"Unknown log context fields: {', '.join(unknown)}")
    current = dict(_bound.get())
    current.update({k: str(v) for k, v in fields.items() if v is not None})
    return tuple((name, current[name]) for name in SESSION_FIELDS if name in current)


class LogContext:
    """The payment-session ids attached to every record in this context."""

    @staticmethod
    def fields() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def set(**fields: str | None) -> None:
        """Bind fields until ``clear()``.  None values leave a field as is."""
        _bound.set(_merged(**fields))

    @staticmethod
    def clear() -> None:
        _bound.set(())

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[dict[str, str]]:
        """Bind fields for the duration of the block, then restore."""
        token = _bound.set(_merged(**fields))
        try:
            yield LogContext.fields()
        finally:
            _bound.reset(token)


# ---------------------------------------------------------------------------
# JSON formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "taskName"}


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return repr(value)


def _error_fields(error: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if isinstance(error, SettlementError):
        fields["error_code"] = error.code
        for name, val in vars(error).items():
            if not name.startswith("_"):
                fields[f"error_{name}"] = val
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, session ids, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.fields(),
        }
        payload.update(
            (key, val) for key, val in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_encode)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``settlement.<name>``."""
    return logging.getLogger(f"{NAMESPACE}.{name}")


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_settlement_owned", False)]


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """
    Attach the JSON handler to the ``settlement`` logger.

    Repeated calls only update the level; a second handler is never added.
    ``level`` accepts a number or a name such as ``SettlementSettings.log_level``.
    """
    root = logging.getLogger(NAMESPACE)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    if _owned_handlers(root):
        return root

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    h._settlement_owned = True
    root.addHandler(h)
    return root


def reset_logging() -> None:
    """Remove the JSON handler and restore defaults.  Tests only."""
    root = logging.getLogger(NAMESPACE)
    for h in _owned_handlers(root):
        root.removeHandler(h)
    root.setLevel(logging.NOTSET)
    root.propagate = True
