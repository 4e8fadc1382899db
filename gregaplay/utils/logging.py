"""Structured Logging Configuration.

This module configures structlog once per process and hands out bound loggers.
Production output is one JSON object per line for log aggregation; development
output uses structlog's console renderer.

Configuration:
- JSON output format by default (LOG_FORMAT=console for local development)
- Context binding support (event_id, run_id bound per pipeline run)
- Log levels: DEBUG, INFO, WARNING, ERROR, CRITICAL (LOG_LEVEL)
"""

import logging
import os
import sys
from typing import Any

import structlog


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; later calls reconfigure.

    Args:
        level: Log level name (defaults to LOG_LEVEL or "INFO")
        fmt: "json" or "console" (defaults to LOG_FORMAT or "json")
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    output_format = (fmt or os.getenv("LOG_FORMAT", "json")).lower()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level, force=True)

    renderer: Any
    if output_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Bound structlog logger for the module
    """
    return structlog.get_logger(name)


def truncate(text: str, limit: int = 500) -> str:
    """Truncate long diagnostic text to prevent log bloat."""
    return text[:limit] + "..." if len(text) > limit else text
