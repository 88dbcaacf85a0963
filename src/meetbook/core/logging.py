"""Structured logging configuration and log context helpers.

configure_structlog() sets up structlog once per process: JSON output in
production, console output elsewhere. Context bound with log_context() (for
example a tick_id for one StartTimeNotifier scan) is merged into every event
logged inside the block, across awaits.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from src.meetbook.config import Environment, Settings, get_settings


def configure_structlog(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib root logger from settings."""
    settings = settings or get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    logging.basicConfig(format="%(message)s", level=level)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def new_tick_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def log_context(**values: Any) -> Iterator[dict[str, Any]]:
    """Bind ``values`` to every log event emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield values
