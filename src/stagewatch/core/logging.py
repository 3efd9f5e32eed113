"""Logging setup for the stagewatch CLI.

Library code logs through ``logging.getLogger(__name__)``; structlog's
ProcessorFormatter renders those records as colored text or JSON lines on
stderr, leaving stdout for command output such as the scan report.  With
``log_root`` set, the same records are also appended as JSON lines to
``{log_root}/{job_name}.log`` so cron runs leave a trail.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from opentelemetry import trace

# Chatty below WARNING on every request or pool checkout.
QUIET_LOGGERS = ("httpx", "httpcore", "asyncpg")

_NO_TRACE = {"trace_id": "0" * 32, "span_id": "0" * 16}


def add_otel_context(_logger, _method_name: str, event_dict: dict) -> dict:
    """Stamp the active span's ids so a scan cycle's records can be correlated."""
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        event_dict.update(_NO_TRACE)
        return event_dict
    event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
    event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def _formatter(renderer, *, timestamp: str) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt=timestamp),
            add_otel_context,
        ],
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    job_name: str | None = None,
) -> None:
    """Route all stdlib logging through structlog renderers.

    ``job_name`` is bound into every record as ``job`` and names the log
    file under ``log_root``.  Calling this again replaces the previous
    handlers.
    """
    structlog.contextvars.clear_contextvars()
    if job_name:
        structlog.contextvars.bind_contextvars(job=job_name)

    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), timestamp="iso")
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), timestamp="%H:%M:%S")

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(console)

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers = [stderr_handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{job_name or 'stagewatch'}.log")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), timestamp="iso"))
        root.addHandler(file_handler)
