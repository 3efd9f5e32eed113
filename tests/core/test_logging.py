"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from stagewatch.core.logging import QUIET_LOGGERS, add_otel_context, configure_logging

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.contextvars.clear_contextvars()
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


def _file_records(path: Path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("stagewatch.scan_cycle") as span:
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] == format(span.get_span_context().trace_id, "032x")
            assert len(result["span_id"]) == 16
        provider.shutdown()


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_reconfiguring_replaces_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_quiet_loggers_raised_to_warning(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_log_file_named_after_job(self, tmp_path: Path):
        configure_logging(fmt="text", log_root=tmp_path / "logs", job_name="scan")

        logging.getLogger("stagewatch.alerts.scanner").warning("deadline scan complete")

        record = _file_records(tmp_path / "logs" / "scan.log")[-1]
        assert record["event"] == "deadline scan complete"
        assert record["job"] == "scan"
        assert record["level"] == "warning"
        assert record["logger"] == "stagewatch.alerts.scanner"

    def test_log_file_default_name_without_job(self, tmp_path: Path):
        configure_logging(log_root=tmp_path)
        logging.getLogger("stagewatch").info("hello")
        record = _file_records(tmp_path / "stagewatch.log")[-1]
        assert record["event"] == "hello"
        assert "job" not in record
