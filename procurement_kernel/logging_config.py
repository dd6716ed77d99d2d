"""
Structured logging for the procurement kernel.

Modules log through ``get_logger("services.inventory")`` style names, with
an event name as the message and its facts in ``extra``::

    logger.info("stock_adjusted", extra={"item_id": ..., "delta": delta})

Records are written one JSON object per line.  Quantities, rates and
amounts are Decimals and are written as strings so no precision is lost;
ids, dates and status enums are written in their plain text form.

The facade binds the operation context (correlation id, actor, operation
name) once per call with ``LogContext.bind``; every record emitted inside
the call carries those fields without the services passing them along.
"""

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ROOT_LOGGER = "procurement_kernel"

_context: ContextVar[Mapping[str, str]] = ContextVar("procurement_log_context", default={})


class LogContext:
    """Operation-scoped fields stamped onto every record."""

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """
        Layer ``fields`` over the current context for the ``with`` block.

        None values are skipped, so an optional field leaves an outer
        binding of the same name visible.
        """
        merged = {**_context.get(), **{k: v for k, v in fields.items() if v is not None}}
        token = _context.set(merged)
        try:
            yield
        finally:
            _context.reset(token)


# Conversions for the value types that appear in procurement events
_ENCODERS: tuple[tuple[type, Any], ...] = (
    (Enum, lambda value: value.value),
    (Decimal, str),
    (UUID, str),
    (datetime, lambda value: value.isoformat()),
    (date, lambda value: value.isoformat()),
    ((set, frozenset, tuple), list),
)


def _encode(value: Any) -> Any:
    for kind, convert in _ENCODERS:
        if isinstance(value, kind):
            return convert(value)
    return str(value)


# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, event fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in entry
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry.update(self._exception_fields(record))
        return json.dumps(entry, default=_encode)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        # ProcurementError subclasses keep their code and structured data
        # (field, quantities, states) as instance attributes.
        exc = record.exc_info[1]
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
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def configure_logging(
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
    force: bool = False,
) -> logging.Handler:
    """
    Attach a JSON handler to the ``procurement_kernel`` logger.

    A second call returns the handler installed by the first and changes
    nothing, unless ``force`` is set, in which case the previous handler
    is detached and replaced.

    Returns:
        The handler now writing procurement events.
    """
    root = logging.getLogger(ROOT_LOGGER)
    installed = [h for h in root.handlers if isinstance(h.formatter, StructuredFormatter)]
    if installed and not force:
        return installed[0]
    for previous in installed:
        root.removeHandler(previous)

    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    return handler
