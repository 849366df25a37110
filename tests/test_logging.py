"""Tests for the structured logging system (lab_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from lab_kernel.exceptions import InsufficientStockError
from lab_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured; hand the suite's configuration back afterwards."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "lab_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("allocated", extra={"seq": 42, "amount": Decimal("2.5")})

        record = _parse_log(stream)
        assert record["seq"] == 42
        assert record["amount"] == "2.5"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(request_id="req-1", item_line_id="line-9")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["request_id"] == "req-1"
        assert record["item_line_id"] == "line-9"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(actor_id="from-context"):
            get_logger("test").info("clash", extra={"actor_id": "from-extra"})

        assert _parse_log(stream)["actor_id"] == "from-context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_ledger_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("ethanol", "central-store", Decimal("60"), Decimal("45"))
        except InsufficientStockError:
            get_logger("test").error("allocation_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_product_id"] == "ethanol"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "request_id" not in record
        assert "actor_id" not in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"entry_id": uid})

        assert _parse_log(stream)["entry_id"] == str(uid)

    def test_debug_suppressed_at_default_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(request_id="x", actor_id="y")
        assert LogContext.get_all() == {"request_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(request_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(experiment_id="outer")
        with LogContext.bind(experiment_id="inner"):
            assert LogContext.get_all()["experiment_id"] == "inner"
        assert LogContext.get_all()["experiment_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(item_line_id="temp"):
            assert LogContext.get_all()["item_line_id"] == "temp"
        assert "item_line_id" not in LogContext.get_all()

    def test_bind_stringifies_uuids(self):
        uid = uuid4()
        with LogContext.bind(request_id=uid):
            assert LogContext.get_all()["request_id"] == str(uid)

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(producer="p"):
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        reset_logging()
        root = logging.getLogger("lab_kernel")
        foreign = list(root.handlers)

        h1, stream = _make_handler()
        configure_logging(handler=h1)
        h2, ignored = _make_handler()
        configure_logging(handler=h2)
        get_logger("test").info("once")

        assert root.handlers == foreign + [h1]
        assert [r["message"] for r in _parse_all_logs(stream)] == ["once"]
        assert ignored.getvalue() == ""

    def test_reset_allows_reconfiguration(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        reset_logging()
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("lab_kernel").handlers
        assert h2 in handlers
        assert h1 not in handlers

    def test_get_logger_returns_child(self):
        assert get_logger("services.allocation").name == "lab_kernel.services.allocation"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "lab_kernel.deep.nested.module"
