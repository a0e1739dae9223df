# src/credbridge/logging_config.py
"""
structlog configuration.

Call `configure_logging` once at process start (the CLI does). Modules
then use `structlog.get_logger(__name__)` and log event-style names:

    log.info("relayer.delivered", sequence=3, tx_hash="0x...")
"""
from __future__ import annotations

import logging

import structlog
from structlog.typing import Processor


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """
    Configure structlog for the process.

    Args:
        level: standard level name; unknown names fall back to INFO.
        fmt: "json" for one JSON object per line, anything else for the
            human-readable console renderer.
    """
    shared_processors: list[Processor] = [
        # Bound request context (sequence, relayer id) from contextvars
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if fmt == "json":
        final_processors: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=shared_processors + final_processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
