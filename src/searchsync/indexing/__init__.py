"""Bulk indexing for searchsync.

Components:
    - BulkConfig: size, timeout and capacity limits of a buffer
    - BulkAction: action descriptor of a queued operation
    - BulkBuffer: FIFO buffer flushing operations as bulk requests
"""

from searchsync.indexing.bulk import (
    BulkAction,
    BulkBuffer,
    BulkConfig,
    BulkOperation,
    build_bulk_body,
)

__all__ = [
    "BulkAction",
    "BulkBuffer",
    "BulkConfig",
    "BulkOperation",
    "build_bulk_body",
]
