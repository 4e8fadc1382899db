"""Tests for structlog configuration."""

import io
import json

import pytest
import structlog

from gregaplay.utils.logging import configure_logging, get_logger, truncate


@pytest.fixture
def output():
    """Route structlog output into a buffer after configuring."""
    buffer = io.StringIO()

    def configure(level, fmt="json"):
        configure_logging(level=level, fmt=fmt)
        structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=buffer))
        return buffer

    yield configure
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_output_includes_bound_context(self, output):
        buffer = output("INFO")
        log = get_logger("tests.logging")

        with structlog.contextvars.bound_contextvars(event_id="E1", run_id="r1"):
            log.info("pipeline_run_started", clip_count=3)

        payload = json.loads(buffer.getvalue().strip().splitlines()[-1])
        assert payload["event"] == "pipeline_run_started"
        assert payload["event_id"] == "E1"
        assert payload["run_id"] == "r1"
        assert payload["clip_count"] == 3
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_level_filters_lower_levels(self, output):
        buffer = output("WARNING")

        get_logger("tests.logging").info("hidden")

        assert "hidden" not in buffer.getvalue()

    def test_unknown_level_defaults_to_info(self, output):
        buffer = output("LOUD")

        get_logger("tests.logging").info("shown")

        assert "shown" in buffer.getvalue()

    def test_console_format(self, output):
        buffer = output("INFO", fmt="console")

        get_logger("tests.logging").info("staging_released", event_id="E1")

        text = buffer.getvalue()
        assert "staging_released" in text
        with pytest.raises(json.JSONDecodeError):
            json.loads(text)


def test_truncate():
    assert truncate("abc", limit=5) == "abc"
    assert truncate("abcdefgh", limit=5) == "abcde..."
