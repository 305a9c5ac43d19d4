"""Logging setup for the API process.

Modules log through ``logging.getLogger(__name__)`` or
``structlog.get_logger()``. Both end up on stderr at LOG_LEVEL; structlog
merges context bound with ``structlog.contextvars`` (account or token
subject) into every event.
"""

import logging

import structlog

from identity.core.config import settings


def configure_logging() -> None:
    """Configure stdlib logging and structlog from settings."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer()
            if settings.environment == "development"
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
