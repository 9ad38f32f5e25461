"""
Structured logging configuration using structlog.

Provides JSON-formatted logs for production and pretty console
logs for development. Supports contextual logging with bound
fields (e.g., page_id, source_id).

Everything is written to stderr: `changelog-hub fetch` prints the
unified changelog JSON on stdout and must stay pipeable.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from changelog_hub.config.settings import get_settings

# Third-party loggers that are chatty at INFO (one line per request or query)
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg")


def setup_logging(level: str | None = None) -> None:
    """
    Configure structured logging for the application.

    In production: JSON-formatted logs (easy to parse in log aggregators)
    In development: Pretty console output, colored only on a terminal

    Args:
        level: Log level name overriding Settings.log_level (e.g. "DEBUG"
            for `changelog-hub --debug`)

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Changelog aggregated", page_id="page_default", releases=12)
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()

    # Common processors for all environments
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        # Production: one JSON object per line, tracebacks rendered inline
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Development: pretty console output
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard library loggers (adapters, retry client, repositories) share
    # the same stream; structlog output is routed through them
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(getattr(logging, level_name))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """
    Bind context variables to all subsequent log messages.

    The CLI binds page_id for the duration of a fetch so every adapter and
    retry line can be traced back to the page being aggregated.

    Args:
        **kwargs: Key-value pairs to bind
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
