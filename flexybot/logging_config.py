"""
Structured logging for the knowledge service (structlog).

Console rendering in development, one JSON object per line when JSON_LOGS is
set. Every event carries the service name; ingestion and retrieval bind the
tenant ids on top of that.
"""

import logging
import os
import sys

import structlog

SERVICE_NAME = "flexybot-knowledge"


def _add_service(_, __, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: bool = False):
    """
    Configure structlog and the stdlib root logger (uvicorn, SQLAlchemy, httpx).

    Safe to call more than once; the last call wins.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_logs: Render JSON lines instead of coloured console output
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    processors = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.plain_traceback))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger()


def configure_from_settings(settings) -> None:
    """Re-apply logging from validated settings at startup."""
    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)
    structlog.contextvars.clear_contextvars()


# Import-time defaults so modules can log before settings are loaded.
logger = setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "").strip().lower() in ("1", "true", "yes", "on"),
)
