"""Structlog configuration for the engine.

Console output when attached to a terminal (or ``LOG_FORMAT=console``),
JSON lines otherwise. Request-scoped ``tenant_id``/``user_id`` are merged in
from contextvars bound by the auth dependency.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "auto").lower()

_configured = False


def _use_console() -> bool:
    if LOG_FORMAT == "console":
        return True
    if LOG_FORMAT == "json":
        return False
    return sys.stdout.isatty()


def configure_logging() -> None:
    global _configured
    if _configured:
        return

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if _use_console():
        processors: list[structlog.types.Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    level = logging.getLevelName(LOG_LEVEL)
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level if isinstance(level, int) else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.types.FilteringBoundLogger:
    return structlog.get_logger(name)
