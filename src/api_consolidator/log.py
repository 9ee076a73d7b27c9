"""Structured logging setup.

Engine modules log through ``structlog.get_logger(__name__)``; the CLI
calls :func:`configure_logging` once at startup.
"""

import logging
import sys

import structlog


def _stderr_logger(*args) -> structlog.PrintLogger:
    # looked up per logger so redirected streams are honoured
    return structlog.PrintLogger(sys.stderr)


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog to write leveled, timestamped events to stderr."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
