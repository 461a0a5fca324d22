"""
Tests for toolcrib_kernel.logging_config: the JSON record envelope, custody
context binding and one-time configuration.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from io import StringIO

import pytest

from toolcrib_kernel.domain.types import ItemKind
from toolcrib_kernel.exceptions import AlreadyCheckedOutError, BatchValidationError
from toolcrib_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from toolcrib_kernel.store.layout import item_ref


@pytest.fixture(autouse=True)
def _fresh_logging():
    """Each test configures logging itself; the suite setup is restored after."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def emitted():
    """Configure toolcrib logging into a buffer; returns a reader of JSON records."""
    stream = StringIO()

    def _install(level=logging.INFO):
        handler = logging.StreamHandler(stream)
        configure_logging(handler=handler, level=level)

    def _records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    _records.install = _install
    return _records


class TestRecordEnvelope:
    def test_envelope_keys(self, emitted):
        emitted.install()
        get_logger("services.custody").info("checkout_committed")

        (record,) = emitted()
        assert record["message"] == "checkout_committed"
        assert record["level"] == "INFO"
        assert record["logger"] == "toolcrib.services.custody"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_extras_flattened(self, emitted):
        emitted.install()
        get_logger("store.memory").debug("ignored_below_info")
        get_logger("store.memory").warning(
            "transaction_conflict_exhausted",
            extra={"attempts": 5, "paths": ["tools/tool-1"]},
        )

        (record,) = emitted()
        assert record["attempts"] == 5
        assert record["paths"] == ["tools/tool-1"]

    def test_custody_values_encoded(self, emitted):
        emitted.install()
        get_logger("test").info(
            "values",
            extra={
                "committed_at": datetime(2025, 10, 20, 9, 0, tzinfo=timezone.utc),
                "debounce": timedelta(seconds=2),
                "item_kind": ItemKind.CONSUMABLE,
                "partition": item_ref(ItemKind.TOOL, "tool-1").child("history", "10-2025"),
                "holders": {"W2", "W1"},
            },
        )

        (record,) = emitted()
        assert record["committed_at"] == "2025-10-20T09:00:00+00:00"
        assert record["debounce"] == 2.0
        assert record["item_kind"] == "consumable"
        assert record["partition"] == "tools/tool-1/history/10-2025"
        assert record["holders"] == ["W1", "W2"]

    def test_custody_error_fields(self, emitted):
        emitted.install()
        try:
            raise AlreadyCheckedOutError("tool-1", "W1")
        except AlreadyCheckedOutError:
            get_logger("batch.coordinator").error("batch_item_failed", exc_info=True)

        (record,) = emitted()
        assert record["exc_type"] == "AlreadyCheckedOutError"
        assert record["exc_code"] == "ALREADY_CHECKED_OUT"
        assert record["exc_item_id"] == "tool-1"
        assert record["exc_current_holder_uid"] == "W1"
        assert "Traceback" in record["traceback"]

    def test_plain_exception_has_no_code(self, emitted):
        emitted.install()
        try:
            raise KeyError("uniqueId")
        except KeyError:
            get_logger("test").warning("history_entry_skipped", exc_info=True)

        (record,) = emitted()
        assert record["exc_type"] == "KeyError"
        assert "exc_code" not in record


class TestCustodyContext:
    def test_bound_fields_stamped_on_records(self, emitted):
        emitted.install()
        with LogContext.bind(item_id="tool-1", actor_id="ADMIN1"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = emitted()
        assert inside["item_id"] == "tool-1"
        assert inside["actor_id"] == "ADMIN1"
        assert "item_id" not in outside

    def test_extras_do_not_override_context(self, emitted):
        emitted.install()
        with LogContext.bind(batch_id="BATCH_a"):
            get_logger("test").info("msg", extra={"batch_id": "BATCH_b"})

        (record,) = emitted()
        assert record["batch_id"] == "BATCH_a"

    def test_nested_binds_restore_in_order(self):
        with LogContext.bind(batch_id="BATCH_outer", actor_id="ADMIN1"):
            with LogContext.bind(batch_id="BATCH_inner", item_id="tool-2"):
                assert LogContext.get_all() == {
                    "batch_id": "BATCH_inner",
                    "actor_id": "ADMIN1",
                    "item_id": "tool-2",
                }
            assert LogContext.get_all() == {"batch_id": "BATCH_outer", "actor_id": "ADMIN1"}
        assert LogContext.get_all() == {}

    def test_none_values_leave_field_unset(self):
        with LogContext.bind(item_id="tool-1", batch_id=None):
            assert LogContext.get_all() == {"item_id": "tool-1"}

    def test_set_persists_until_clear(self):
        LogContext.set(correlation_id="seed-run")
        assert LogContext.get_all() == {"correlation_id": "seed-run"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(trace_id="t")
        with pytest.raises(TypeError):
            LogContext.bind(staff="W1")


class TestConfigureLogging:
    def test_first_configuration_wins(self, emitted):
        emitted.install()
        configure_logging(handler=logging.StreamHandler(StringIO()), level=logging.DEBUG)
        root = logging.getLogger("toolcrib")
        assert len(root.handlers) == 1
        assert root.level == logging.INFO

    def test_level_name_from_config(self, emitted):
        emitted.install(level="debug")
        get_logger("selectors.item_cache").debug("item_cache_reloaded")
        assert [r["message"] for r in emitted()] == ["item_cache_reloaded"]

    def test_unknown_level_name_rejected(self):
        with pytest.raises(ValueError):
            configure_logging(level="CHATTY")
        assert logging.getLogger("toolcrib").handlers == []

    def test_records_do_not_reach_root_logger(self, emitted):
        emitted.install()
        assert logging.getLogger("toolcrib").propagate is False

    def test_formatter_usable_on_foreign_handler(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        logger = logging.getLogger("toolcrib.tests.isolated")
        logger.addHandler(handler)
        try:
            with LogContext.bind(batch_id="BATCH_x"):
                logger.error("batch_submit_failed", extra={"reason": "missing_assignee"})
        finally:
            logger.removeHandler(handler)

        record = json.loads(stream.getvalue().splitlines()[0])
        assert record["batch_id"] == "BATCH_x"
        assert record["reason"] == "missing_assignee"
