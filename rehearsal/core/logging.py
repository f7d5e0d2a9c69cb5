import logging
from contextlib import AbstractContextManager

import structlog

from .config import EnvironmentType, Settings


def _level_for(settings: Settings) -> int:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    if settings.ENVIRONMENT == EnvironmentType.PRODUCTION:
        # Debug output of the stores is never wanted in production
        return max(level, logging.INFO)
    return level


def setup_logging(settings: Settings) -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == EnvironmentType.DEVELOPMENT:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(_level_for(settings)),
        cache_logger_on_first_use=True,
    )


def session_context(session_id: str) -> AbstractContextManager:
    """Attach ``session_id`` to every log line emitted inside the block."""
    return structlog.contextvars.bound_contextvars(session_id=session_id)
