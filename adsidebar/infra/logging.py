"""Structured logging for the sidebar pipeline and the gateway.

setup_logging() runs once from the gateway lifespan. Pipeline modules only
take ``structlog.get_logger()``; sessions bind their ``session_id`` so the
records of one page can be filtered together.
"""

from __future__ import annotations

import logging

import structlog

from adsidebar.config.settings import LogSettings


def setup_logging(settings: LogSettings | None = None) -> None:
    """Configure structlog from LogSettings (LOG_LEVEL, LOG_JSON_OUTPUT)."""
    settings = settings or LogSettings()
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.json_output:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.processors.format_exc_info, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
