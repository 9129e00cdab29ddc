"""Tests for structured logging."""

import io
import json
import logging
import sys

import pytest

from smartrepo.logging import (
    ContextFilter,
    JSONFormatter,
    LogContext,
    TextFormatter,
    configure_logging,
    get_log_context,
    get_logger,
    with_log_context,
)
from smartrepo.repos.memory import MemoryRepo


def make_record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("smartrepo.test", level, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def stream():
    """Capture smartrepo JSON logs and restore the logger afterwards."""
    output = io.StringIO()
    configure_logging(level="DEBUG", format="json", output=output)
    yield output
    root = logging.getLogger("smartrepo")
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


def read_lines(output):
    return [json.loads(line) for line in output.getvalue().splitlines()]


class TestLogContext:
    """Tests for context propagation."""

    def test_nested_contexts_merge_and_restore(self):
        """Inner fields are merged and removed on exit."""
        assert get_log_context() == {}
        with with_log_context(collection="users"):
            with with_log_context(operation="count", scope=None):
                assert get_log_context() == {"collection": "users", "operation": "count"}
            assert get_log_context() == {"collection": "users"}
        assert get_log_context() == {}

    def test_log_context_object(self):
        """LogContext drops empty fields."""
        context = LogContext(collection="users", scope={}, extra={"attempt": 2})
        assert context.to_dict() == {"collection": "users", "attempt": 2}
        with with_log_context(context):
            assert get_log_context()["attempt"] == 2

    def test_filter_does_not_override_record_fields(self):
        """Explicit record fields win over context."""
        record = make_record(collection="explicit")
        with with_log_context(collection="users", operation="find"):
            assert ContextFilter().filter(record)
        assert record.collection == "explicit"
        assert record.operation == "find"


class TestFormatters:
    """Tests for JSON and text output."""

    def test_json_fields(self):
        """JSON output carries level, message, context and extras."""
        record = make_record(collection="users", rows=3, obj=object())
        data = json.loads(JSONFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["logger"] == "smartrepo.test"
        assert data["message"] == "hello"
        assert data["collection"] == "users"
        assert data["extra"]["rows"] == 3
        assert isinstance(data["extra"]["obj"], str)

    def test_json_without_extra(self):
        """Extras can be turned off."""
        data = json.loads(JSONFormatter(include_extra=False).format(make_record(rows=3)))
        assert "extra" not in data

    def test_json_exception(self):
        """Exceptions are serialized with type and message."""
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "smartrepo.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        data = json.loads(JSONFormatter().format(record))
        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "boom"

    def test_text(self):
        """Text output shows context fields."""
        line = TextFormatter(use_colors=False).format(
            make_record(collection="users", operation="count")
        )
        assert "INFO" in line
        assert "[collection=users, operation=count]" in line
        assert line.endswith("smartrepo.test [collection=users, operation=count]: hello")

    def test_text_colors(self):
        """Levels are colorized when enabled."""
        line = TextFormatter(use_colors=True).format(make_record(level=logging.WARNING))
        assert "\033[33m" in line


class TestRepoLogging:
    """Tests for repository log output."""

    def test_keyword_fields(self, stream):
        """Keyword arguments become structured fields."""
        get_logger("smartrepo.test").info("Fetched", rows=4)
        (line,) = read_lines(stream)
        assert line["message"] == "Fetched"
        assert line["extra"] == {"rows": 4}

    def test_level_filtering(self):
        """Disabled levels are skipped."""
        output = io.StringIO()
        configure_logging(level="WARNING", format="text", output=output, use_colors=False)
        try:
            logger = get_logger("smartrepo.test")
            logger.debug("hidden")
            logger.warning("shown")
        finally:
            root = logging.getLogger("smartrepo")
            root.handlers.clear()
            root.propagate = True
            root.setLevel(logging.NOTSET)
        assert "hidden" not in output.getvalue()
        assert "shown" in output.getvalue()

    @pytest.mark.asyncio
    async def test_operations_log_with_context(self, stream):
        """Records inside an operation carry the collection and operation."""
        repo = MemoryRepo("users", scope={"tenant": "t1"})
        await repo.create({"name": "A"})
        lines = read_lines(stream)
        line = next(entry for entry in lines if entry["message"] == "Created entities")
        assert line["collection"] == "users"
        assert line["extra"]["count"] == 1

    @pytest.mark.asyncio
    async def test_scope_breach_is_logged(self, stream):
        """Ignored scope breaches leave a debug record."""
        repo = MemoryRepo("users", scope={"tenant": "t1"})
        assert await repo.count({"tenant": "t2"}) == 0
        lines = read_lines(stream)
        line = next(entry for entry in lines if entry["message"] == "Filter contradicts scope")
        assert line["operation"] == "count"
