"""Tests for the structured logging system (payroll_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, restoring the suite configuration after."""
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
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "payroll_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("payroll_stored", extra={"line_count": 3, "status": "calculated"})

        record = _parse_log(stream)
        assert record["line_count"] == 3
        assert record["status"] == "calculated"

    def test_decimal_and_uuid_serialized_as_strings(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        payroll_id = uuid4()
        get_logger("test").info("amounts", extra={
            "payroll_id": payroll_id, "net_salary": Decimal("2429357.52"),
        })

        record = _parse_log(stream)
        assert record["payroll_id"] == str(payroll_id)
        assert record["net_salary"] == "2429357.52"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(batch_id="b-1", employee_id="EMP-001")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["batch_id"] == "b-1"
        assert record["employee_id"] == "EMP-001"

    def test_payroll_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from payroll_kernel.exceptions import ClosedPeriodError

        try:
            raise ClosedPeriodError("2024-01", "create_payroll")
        except ClosedPeriodError:
            get_logger("test").error("period_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "CLOSED_PERIOD"
        assert record["exc_type"] == "ClosedPeriodError"
        assert record["exc_period_code"] == "2024-01"
        assert record["exc_operation"] == "create_payroll"
        assert "traceback" in record

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_clear(self):
        LogContext.set(payroll_id="p", period_id="q")
        assert LogContext.get_all() == {"payroll_id": "p", "period_id": "q"}

        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(employee_id="outer")
        with LogContext.bind(employee_id="inner"):
            assert LogContext.get_all()["employee_id"] == "inner"
        assert LogContext.get_all()["employee_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(batch_id="temp"):
            assert LogContext.get_all()["batch_id"] == "temp"
        assert "batch_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(not_a_field="x", actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("payroll_kernel").handlers) == 1

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("modules.payroll.batch").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "payroll_kernel.modules.payroll.batch"
