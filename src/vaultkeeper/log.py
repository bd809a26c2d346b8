"""
Structured logging setup.

Mirrors the processor chain used by the service entry points so library
users get the same JSON lines when they opt in.
"""

import logging

import structlog

from vaultkeeper.config import config


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Minimum log level name (defaults to LOG_LEVEL)
        json_output: Render JSON lines instead of console output
    """
    level = level or config.logging.level
    if json_output is None:
        json_output = config.logging.json_output

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


__all__ = ["configure_logging"]
