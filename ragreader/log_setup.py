"""Structured logging configuration."""
import logging
import sys

import structlog

from ragreader import config


def configure_logging(level: str = None, json_output: bool = True) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level name (defaults to config.LOG_LEVEL)
        json_output: Render JSON lines; otherwise use the console renderer
    """
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
