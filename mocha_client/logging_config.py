"""Structured logging configuration using structlog."""

import datetime
import logging
from typing import Any, Optional

import structlog
from structlog.types import EventDict

from .config import LoggingConfig


def add_timestamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to log entries."""
    event_dict["timestamp"] = (
        datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")
    )
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structlog to render through the standard library.

    Handlers stay with the application: records go to stdlib loggers, so an
    application that never configures logging only sees WARNING and above.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Format type ('json' for production, 'console' for development)
    """
    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors = shared_processors + [structlog.processors.JSONRenderer()]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger("mocha_client").setLevel(numeric_level)


def configure_logging(config: LoggingConfig) -> None:
    """
    Configure logging for a client unless the application already did.

    The level of ``config.logger_name`` is always applied.
    """
    if not structlog.is_configured():
        setup_logging(config.level, config.format)
    logging.getLogger(config.logger_name).setLevel(getattr(logging, config.level))


def get_logger(name: Optional[str] = None) -> Any:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
