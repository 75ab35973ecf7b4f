"""
Structured logging setup shared by every workflow component.
"""

import logging

import structlog

from ambient_studio.config import settings


def configure_logging(level: str = None, json_output: bool = None) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Log level name (default from LOG_LEVEL)
        json_output: Render JSON instead of console output (default from LOG_JSON)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    use_json = settings.LOG_JSON if json_output is None else json_output

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
