"""Structured logging configuration with structlog.

Call ``configure_logging()`` once at application startup, then log with
``structlog.get_logger(__name__)`` and keyword context::

    log.info("exeat_approved", exeat_id=str(exeat.id), role="dean")
"""

import logging
from typing import List, Optional

import structlog
from structlog.typing import Processor

from app.core.config import settings


def _get_log_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_logging(environment: Optional[str] = None, level: Optional[str] = None) -> None:
    """Configure structlog: JSON output in production, coloured console output otherwise."""
    environment = environment or settings.environment
    level = level or settings.log_level

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
