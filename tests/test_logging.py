"""Tests for coop_kernel/logging_config.py."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from coop_kernel.exceptions import ValidationBlockingError
from coop_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured, then restore the suite's setup."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def stream() -> StringIO:
    """Configure the coop logger to write JSON lines into a buffer."""
    buffer = StringIO()
    configure_logging(stream=buffer)
    return buffer


def _records(buffer: StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestStructuredFormatter:
    def test_envelope(self, stream):
        get_logger("ingestion.import_service").info("import_session_created")

        (record,) = _records(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "import_session_created"
        assert record["logger"] == "coop.ingestion.import_service"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_extra_and_bound_fields(self, stream):
        session_id = uuid4()
        with LogContext.bind(session_id=session_id, import_type="USERS"):
            get_logger("test").info("import_validated", extra={"errors": 2, "is_valid": False})

        (record,) = _records(stream)
        assert record["session_id"] == str(session_id)
        assert record["import_type"] == "USERS"
        assert record["errors"] == 2
        assert record["is_valid"] is False

    def test_bound_field_wins_over_extra(self, stream):
        with LogContext.bind(job_id="job-1"):
            get_logger("test").info("clash", extra={"job_id": "other"})

        assert _records(stream)[0]["job_id"] == "job-1"

    def test_non_json_values_rendered_as_text(self, stream):
        entity_id = uuid4()
        when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        get_logger("test").info(
            "typed",
            extra={"entity_id": entity_id, "amount": Decimal("12.50"), "at": when, "path": object()},
        )

        record = _records(stream)[0]
        assert record["entity_id"] == str(entity_id)
        assert record["amount"] == "12.50"
        assert record["at"] == when.isoformat()
        assert record["path"].startswith("<object")

    def test_coop_exception_attributes_flattened(self, stream):
        try:
            raise ValidationBlockingError("s-1", 4)
        except ValidationBlockingError:
            get_logger("test").error("start_failed", exc_info=True)

        record = _records(stream)[0]
        assert record["exc_type"] == "ValidationBlockingError"
        assert record["exc_code"] == "VALIDATION_ERRORS_REMAIN"
        assert record["exc_session_id"] == "s-1"
        assert record["exc_error_count"] == 4
        assert "Traceback" in record["traceback"]

    def test_plain_exception_has_no_code(self, stream):
        try:
            raise KeyError("missing")
        except KeyError:
            get_logger("test").exception("lookup_failed")

        record = _records(stream)[0]
        assert record["exc_type"] == "KeyError"
        assert "exc_code" not in record

    def test_formatter_usable_on_its_own_handler(self):
        buffer = StringIO()
        handler = logging.StreamHandler(buffer)
        handler.setFormatter(StructuredFormatter())
        logger = logging.getLogger("coop.standalone")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            logger.info("standalone", extra={"rows": 3})
        finally:
            logger.removeHandler(handler)
        assert _records(buffer)[0]["rows"] == 3


class TestLogContext:
    def test_set_get_clear(self):
        LogContext.set(correlation_id="x", job_id="j", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "x", "job_id": "j"}
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_outer_value(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", session_id="s"):
            assert LogContext.get_all() == {"actor_id": "inner", "session_id": "s"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(job_id="j"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}

    def test_unknown_fields_ignored(self):
        with LogContext.bind(trace_id="t", session_id="s"):
            assert LogContext.get_all() == {"session_id": "s"}


class TestConfigureLogging:
    def test_only_first_call_installs_a_handler(self):
        configure_logging(stream=StringIO())
        configure_logging(stream=StringIO())
        assert len(logging.getLogger("coop").handlers) == 1

    def test_level_by_name(self, stream):
        reset_logging()
        configure_logging(stream=stream, level="debug")
        get_logger("deep.nested").debug("hierarchy_test")
        assert _records(stream)[0]["logger"] == "coop.deep.nested"

    def test_default_level_drops_debug(self, stream):
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second")
        logger.debug("third")
        assert [r["message"] for r in _records(stream)] == ["first", "second"]

    def test_reset_detaches_handlers(self, stream):
        reset_logging()
        assert logging.getLogger("coop").handlers == []
