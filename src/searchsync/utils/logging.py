"""Structured logging configuration using structlog.

searchsync modules log through stdlib loggers. ``configure_logging`` renders
those records with the same structlog processor chain as structlog loggers,
so context bound with ``bind_context`` or ``sync_context`` (index, model)
shows up on every line logged while it is bound.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from structlog.contextvars import (
    bind_contextvars,
    bound_contextvars,
    clear_contextvars,
    merge_contextvars,
)


def _shared_processors(add_timestamps: bool) -> list[Any]:
    processors: list[Any] = [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if add_timestamps:
        processors.insert(1, structlog.processors.TimeStamper(fmt="iso", utc=True))

    return processors


def build_formatter(
    json_format: bool = True, add_timestamps: bool = True
) -> structlog.stdlib.ProcessorFormatter:
    """Build the formatter rendering stdlib and structlog records alike.

    Args:
            json_format: Output logs as JSON (True) or human-readable (False).
            add_timestamps: Include timestamps in log output.
    """
    if json_format:
        renderer: Any = structlog.processors.JSONRenderer(indent=None, sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(add_timestamps),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    add_timestamps: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR).
            json_format: Output logs as JSON (True) or human-readable (False).
            add_timestamps: Include timestamps in log output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(json_format, add_timestamps))
    logging.basicConfig(handlers=[handler], level=log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(add_timestamps),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger instance.

    Args:
            name: Logger name (defaults to caller module).

    Returns:
            Configured structlog logger (BoundLogger).
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to the current context.

    These values will be included in all subsequent log messages
    within the same async context.

    Example:
            >>> bind_context(index="cats")
            >>> logger.info("index created")
            # Output includes: {"index": "cats", ...}
    """
    bind_contextvars(**kwargs)


def sync_context(
    index: str | None = None, model: str | None = None
) -> AbstractContextManager[None]:
    """Bind the index and model of a sync operation for the duration of a block.

    Fields left as None are not bound. Previous values are restored on exit.

    Example:
            >>> with sync_context(index="cats", model="Cat"):
            ...     logger.info("Synced 3 records")
    """
    fields = {key: value for key, value in (("index", index), ("model", model)) if value}
    return bound_contextvars(**fields)


def clear_context() -> None:
    """Clear all context variables."""
    clear_contextvars()
