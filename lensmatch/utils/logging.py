"""
Lensmatch — structlog configuration shared by the API process and the
standalone embedding worker.
"""

from __future__ import annotations

import logging

import structlog

from lensmatch.config import get_settings


def configure_logging(level: str | None = None) -> None:
    """Configure JSON structured logging at ``level`` (defaults to LOG_LEVEL)."""
    level_name = (level or get_settings().LOG_LEVEL).upper()
    min_level = logging.getLevelName(level_name)
    if not isinstance(min_level, int):
        min_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
