"""Tests for tool_audit.observability — structured logging and statistics.

Test Categories:
    - ``_format_value``: key=value rendering
    - ``StructuredFormatter`` / ``JSONFormatter``: record output
    - ``LogContext``: contextvar fields, nesting, thread propagation
    - ``configure_logging`` / ``get_logger``: handler setup and reset
    - ``AuditStats``: per-service records and summary
"""

from __future__ import annotations

import contextvars
import io
import json
import logging
import sys
import threading

import pytest

from tool_audit.observability import (
    AuditStats,
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from tool_audit.observability.logging import ROOT_LOGGER, _format_value


def _record(msg: str = "hello", **structured) -> logging.LogRecord:
    record = logging.LogRecord("tool_audit.test", logging.INFO, __file__, 1, msg, None, None)
    if structured:
        record.structured_data = structured
    return record


def _package_handlers() -> list[logging.Handler]:
    """Handlers configure_logging installed; pytest may attach capture handlers too."""
    return [h for h in logging.getLogger(ROOT_LOGGER).handlers if type(h) is logging.StreamHandler]


@pytest.fixture
def captured() -> io.StringIO:
    """Package logging configured at DEBUG into a StringIO."""
    stream = io.StringIO()
    configure_logging(level="DEBUG", stream=stream, force=True)
    return stream


class TestFormatValue:
    """Rendering of individual structured values."""

    def test_none(self) -> None:
        assert _format_value(None) == "null"

    def test_plain_string(self) -> None:
        assert _format_value("osmmcp") == "osmmcp"

    def test_string_with_spaces_is_quoted(self) -> None:
        assert _format_value("no data") == '"no data"'

    def test_empty_string_is_quoted(self) -> None:
        assert _format_value("") == '""'

    def test_collections_as_json(self) -> None:
        assert _format_value(["go", "run"]) == '["go", "run"]'
        assert _format_value({"a": 1}) == '{"a": 1}'

    def test_numbers(self) -> None:
        assert _format_value(42) == "42"
        assert _format_value(1.5) == "1.5"


class TestFormatters:
    """Text and JSON output of a single record."""

    def test_structured_formatter_appends_fields(self) -> None:
        formatter = StructuredFormatter(fmt="%(message)s")
        assert formatter.format(_record(tool_count=3, service="osm")) == (
            "hello | tool_count=3 service=osm"
        )

    def test_structured_formatter_without_fields(self) -> None:
        assert StructuredFormatter(fmt="%(message)s").format(_record()) == "hello"

    def test_structured_formatter_can_hide_fields(self) -> None:
        formatter = StructuredFormatter(fmt="%(message)s", include_structured=False)
        assert formatter.format(_record(pid=1)) == "hello"

    def test_json_formatter(self) -> None:
        payload = json.loads(JSONFormatter().format(_record(service="osm", pid=7)))
        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "tool_audit.test"
        assert payload["service"] == "osm"
        assert payload["pid"] == 7
        assert payload["timestamp"].endswith("+00:00")

    def test_json_formatter_exception(self) -> None:
        try:
            raise ValueError("broken pipe")
        except ValueError:
            record = logging.LogRecord(
                "t", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )
        payload = json.loads(JSONFormatter().format(record))
        assert "ValueError: broken pipe" in payload["exception"]


class TestStructuredLogging:
    """Loggers obtained through get_logger."""

    def test_get_logger_returns_structured_logger(self) -> None:
        assert isinstance(get_logger("tool_audit.tests.kind"), StructuredLogger)

    def test_keyword_fields(self, captured: io.StringIO) -> None:
        get_logger("tool_audit.tests.fields").info("Session started", pid=4242)
        assert "Session started | pid=4242" in captured.getvalue()

    def test_level_filtering(self) -> None:
        stream = io.StringIO()
        configure_logging(level="WARNING", stream=stream, force=True)
        logger = get_logger("tool_audit.tests.level")
        logger.info("quiet")
        logger.warning("loud")
        assert "quiet" not in stream.getvalue()
        assert "loud" in stream.getvalue()

    def test_does_not_propagate_to_root(self, captured: io.StringIO) -> None:
        assert logging.getLogger(ROOT_LOGGER).propagate is False

    def test_reset_removes_handler(self, captured: io.StringIO) -> None:
        reset_logging()
        assert _package_handlers() == []

    def test_reset_leaves_foreign_handlers(self, captured: io.StringIO) -> None:
        root = logging.getLogger(ROOT_LOGGER)
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        try:
            reset_logging()
            assert foreign in root.handlers
        finally:
            root.removeHandler(foreign)

    def test_configure_is_idempotent(self, captured: io.StringIO) -> None:
        configure_logging(level="DEBUG", stream=io.StringIO())
        handlers = _package_handlers()
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, StructuredFormatter)

    def test_caller_location_is_the_call_site(self) -> None:
        stream = io.StringIO()
        configure_logging(level="DEBUG", stream=stream, force=True)
        (handler,) = _package_handlers()
        handler.setFormatter(logging.Formatter("%(funcName)s"))
        get_logger("tool_audit.tests.caller").info("where")
        assert stream.getvalue().strip() == "test_caller_location_is_the_call_site"


class TestLogContext:
    """Context fields attached to every record in scope."""

    def test_fields_added(self, captured: io.StringIO) -> None:
        with LogContext(service="osm", language="Go"):
            get_logger("tool_audit.tests.ctx").info("Tools listed", tool_count=2)
        assert "service=osm language=Go tool_count=2" in captured.getvalue()

    def test_restored_on_exit(self, captured: io.StringIO) -> None:
        with LogContext(service="osm"):
            pass
        get_logger("tool_audit.tests.ctx").info("after")
        assert "service=osm" not in captured.getvalue()

    def test_nested_inner_wins(self, captured: io.StringIO) -> None:
        with LogContext(service="outer", step="init"):
            with LogContext(step="tools/list"):
                get_logger("tool_audit.tests.ctx").info("inner")
        assert "service=outer step=tools/list" in captured.getvalue()

    def test_explicit_field_beats_context(self, captured: io.StringIO) -> None:
        with LogContext(service="ctx"):
            get_logger("tool_audit.tests.ctx").info("m", service="explicit")
        assert "service=explicit" in captured.getvalue()

    def test_copied_context_reaches_worker_thread(self, captured: io.StringIO) -> None:
        logger = get_logger("tool_audit.tests.ctx")
        with LogContext(service="threaded"):
            context = contextvars.copy_context()
        thread = threading.Thread(target=context.run, args=(logger.info, "from worker"))
        thread.start()
        thread.join()
        assert "from worker | service=threaded" in captured.getvalue()


class TestAuditStats:
    """Per-service records and summary."""

    def test_empty_summary(self) -> None:
        summary = AuditStats().get_summary()
        assert summary.attempted == 0
        assert summary.success_rate == 0.0
        assert summary.avg_duration_ms == 0.0
        assert summary.last_record_at is None

    def test_summary(self) -> None:
        stats = AuditStats()
        stats.record("a", 100.0, True)
        stats.record("b", 300.0, True)
        stats.record("c", 45000.0, False, "SessionTimeoutError")
        stats.record("d", 5.0, False)

        summary = stats.get_summary()
        assert summary.attempted == 4
        assert summary.succeeded == 2
        assert summary.failed == 2
        assert summary.success_rate == 0.5
        assert summary.min_duration_ms == 100.0
        assert summary.max_duration_ms == 300.0
        assert summary.avg_duration_ms == 200.0
        assert summary.error_counts == {"SessionTimeoutError": 1, "unknown": 1}
        assert summary.last_record_at is not None

    def test_success_drops_error_type(self) -> None:
        stats = AuditStats()
        stats.record("a", 1.0, True, "Ignored")
        assert stats.records[0].error_type is None

    def test_to_dict_is_json_serializable(self) -> None:
        stats = AuditStats()
        stats.record("a", 1.0, True)
        json.dumps(stats.get_summary().to_dict())

    def test_reset(self) -> None:
        stats = AuditStats()
        stats.record("a", 1.0, True)
        stats.reset()
        assert stats.records == []

    def test_thread_safe_recording(self) -> None:
        stats = AuditStats()
        threads = [
            threading.Thread(target=lambda n=n: stats.record(f"s{n}", float(n), True))
            for n in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert stats.get_summary().attempted == 20
