"""Utility modules for searchsync."""

from searchsync.utils.logging import (
    bind_context,
    build_formatter,
    clear_context,
    configure_logging,
    get_logger,
    sync_context,
)

__all__ = [
    "bind_context",
    "build_formatter",
    "clear_context",
    "configure_logging",
    "get_logger",
    "sync_context",
]
