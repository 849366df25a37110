"""
Structured JSON logging for the lab ledger kernel.

Every record under the ``lab_kernel`` logger tree is rendered as one JSON
object per line.  Operation-scoped identifiers (actor, request,
experiment, item line, correlation id) are bound once through
``LogContext`` and stamped onto every record emitted inside the scope, so
service code only passes the event-specific payload via ``extra=``.

    with LogContext.bind(actor_id=actor.actor_id, item_line_id=line.id):
        logger.info("allocation_line_succeeded", extra={"amount": amount})
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, TextIO
from uuid import UUID

ROOT_LOGGER_NAME = "lab_kernel"

# ---------------------------------------------------------------------------
# Operation context
# ---------------------------------------------------------------------------

_EMPTY: Mapping[str, str] = {}
_bound_fields: ContextVar[Mapping[str, str]] = ContextVar(
    "lab_log_context", default=_EMPTY
)


class LogContext:
    """Per-task log fields, safe across threads and asyncio tasks.

    Only the names in ``FIELDS`` are accepted; anything else passed to
    ``set`` or ``bind`` is dropped.  Values are stored as strings.
    """

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "actor_id",
        "request_id",
        "experiment_id",
        "item_line_id",
    )

    @classmethod
    def _merged(cls, updates: dict[str, Any]) -> dict[str, str]:
        fields = dict(_bound_fields.get())
        for name, value in updates.items():
            if name in cls.FIELDS and value is not None:
                fields[name] = str(value)
        return fields

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Overwrite the given fields for the rest of the current context."""
        _bound_fields.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound_fields.get())

    @classmethod
    def clear(cls) -> None:
        _bound_fields.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block."""
        token = _bound_fields.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _bound_fields.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else on a record came from extra=.
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _to_json_value(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_to_json_value)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # LabLedgerError subclasses keep their structured data as attributes.
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = value
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Return ``lab_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_setup_lock = threading.Lock()
_handler_installed = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``lab_kernel`` tree.

    Only the first call has an effect until ``reset_logging`` runs.
    """
    global _handler_installed
    with _setup_lock:
        if _handler_installed:
            return
        _handler_installed = True

        if handler is None:
            handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` again. Tests only."""
    global _handler_installed
    with _setup_lock:
        _handler_installed = False
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root.handlers):
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)
