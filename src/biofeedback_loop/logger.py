"""Structured logging configuration using *structlog*."""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_logs: bool | None = None) -> None:
    """Configure *structlog* for the engine.

    Call once at process startup.  Estimator and controller faults are
    reported as log events rather than exceptions, so ``level`` decides
    whether per-tick diagnostics (DEBUG) are visible.  Logs go to stderr so
    the CLI can keep stdout for JSON records; ``json_logs`` forces the
    renderer, otherwise a TTY gets the console renderer.
    """
    if json_logs is None:
        json_logs = not sys.stderr.isatty()
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
