"""Tests for the structured logging system (campaign_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from campaign_kernel.exceptions import InvalidTransitionError
from campaign_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _buffer_handler() -> tuple[logging.Handler, StringIO]:
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(StructuredFormatter())
    return handler, buffer


@pytest.fixture
def emitted():
    """Route logging into a buffer; call the result for the parsed records."""

    def _install(level=logging.INFO):
        handler, buffer = _buffer_handler()
        configure_logging(handler=handler, level=level)
        return lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    return _install


log = get_logger("test")


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_envelope(self, emitted):
        records = emitted()
        log.info("hello")

        (record,) = records()
        assert (record["level"], record["message"], record["logger"]) == ("INFO", "hello", "campaign_kernel.test")
        assert record["ts"].endswith("+00:00")

    def test_extra_fields_are_top_level(self, emitted):
        records = emitted()
        log.info(
            "campaign_probability_updated",
            extra={"old_probability": 35, "new_probability": 65, "campaign_status": "talent_review"},
        )

        (record,) = records()
        assert record["old_probability"] == 35
        assert record["new_probability"] == 65
        assert record["campaign_status"] == "talent_review"

    def test_context_is_stamped_on_each_record(self, emitted):
        records = emitted()
        with LogContext.bind(workflow_id="run-456", tenant_id=uuid4()):
            log.info("inside")
        log.info("outside")

        inside, outside = records()
        assert inside["workflow_id"] == "run-456"
        assert "tenant_id" in inside
        assert "workflow_id" not in outside

    def test_plain_exception(self, emitted):
        records = emitted()
        try:
            raise ValueError("boom")
        except ValueError:
            log.error("failed", exc_info=True)

        (record,) = records()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_workflow_exception_attributes(self, emitted):
        records = emitted()
        try:
            raise InvalidTransitionError("c-1", "100%", "approve")
        except InvalidTransitionError:
            log.warning("transition_rejected", exc_info=True)

        (record,) = records()
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_type"] == "InvalidTransitionError"
        assert (record["exc_entity_id"], record["exc_current_state"], record["exc_transition"]) == (
            "c-1", "100%", "approve",
        )

    def test_non_json_values(self, emitted):
        records = emitted()
        uid = uuid4()
        log.info(
            "invoice_created",
            extra={"invoice_id": uid, "total_amount": Decimal("1700.00"), "flags": {"b", "a"}},
        )

        (record,) = records()
        assert record["invoice_id"] == str(uid)
        assert record["total_amount"] == "1700.00"
        assert record["flags"] == ["a", "b"]

    def test_level_filtering(self, emitted):
        records = emitted()
        log.info("first")
        log.warning("second", extra={"k": "v"})
        log.debug("third")

        assert [r["message"] for r in records()] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_merges(self):
        LogContext.set(correlation_id="x")
        LogContext.set(tenant_id="t", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "x", "tenant_id": "t"}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(TypeError, match="campaign_id"):
            LogContext.set(campaign_id="c-1")

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_each_layer(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="middle", entity_id="e-1"):
            with LogContext.bind(correlation_id="inner"):
                assert LogContext.get_all() == {"correlation_id": "inner", "entity_id": "e-1"}
            assert LogContext.get_all() == {"correlation_id": "middle", "entity_id": "e-1"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_stringifies_and_skips(self):
        tenant = uuid4()
        with LogContext.bind(tenant_id=tenant, actor_id=None, campaign_id="ignored"):
            assert LogContext.get_all() == {"tenant_id": str(tenant)}

    def test_get_all_is_a_copy(self):
        LogContext.set(trace_id="t")
        LogContext.get_all()["trace_id"] = "changed"
        assert LogContext.get_all() == {"trace_id": "t"}


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_first_handler_wins(self):
        first, _ = _buffer_handler()
        second, _ = _buffer_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        handlers = logging.getLogger("campaign_kernel").handlers
        assert first in handlers
        assert second not in handlers

    def test_reset_allows_reconfiguration(self):
        first, _ = _buffer_handler()
        second, _ = _buffer_handler()
        configure_logging(handler=first)
        reset_logging()
        configure_logging(handler=second)
        handlers = logging.getLogger("campaign_kernel").handlers
        assert second in handlers
        assert first not in handlers

    def test_child_loggers_share_the_handler(self, emitted):
        records = emitted(level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        (record,) = records()
        assert record["logger"] == "campaign_kernel.deep.nested.module"
