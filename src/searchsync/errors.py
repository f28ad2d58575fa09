"""Error taxonomy for search index synchronization."""

from typing import Any

ERROR_CODES: dict[str, str] = {
    "invalid-host": "Invalid host name",
    "invalid-index-name": "Invalid index name",
    "invalid-settings": "Invalid elasticsearch index settings",
    "invalid-mapping": "Invalid mapping",
    "invalid-type": "Invalid type",
    "invalid-document-id": "Invalid document id",
    "invalid-document": "Invalid document",
    "invalid-options": "Invalid options",
    "invalid-schema": "Invalid schema",
    "invalid-model": "Invalid model",
    "invalid-transform": "Invalid transform function",
    "invalid-bulk-size": "Invalid bulk size",
    "invalid-bulk-timeout": "Invalid bulk timeout",
    "invalid-bulk-buffer-size": "Invalid bulk buffer size",
    "invalid-search-query": "Invalid search query",
}


class SearchSyncError(Exception):
    """Base class for all searchsync errors."""


class InvalidArgumentError(SearchSyncError):
    """Raised when a caller passes a malformed argument.

    Always detected locally, before any I/O, and never retried.

    Attributes:
        code: Machine readable error code (see ``ERROR_CODES``).
    """

    def __init__(self, code: str) -> None:
        self.code = code
        self.message = ERROR_CODES.get(code, "Invalid argument")
        super().__init__(self.message)


class IndexNotFoundError(SearchSyncError):
    """The addressed index does not exist."""


class DocumentNotFoundError(SearchSyncError):
    """The addressed document does not exist."""


class IndexOperationError(SearchSyncError):
    """The backend answered, but the operation itself did not succeed.

    Attributes:
        items: Per-item failures reported by the backend, if any.
    """

    def __init__(self, message: str, items: list[dict[str, Any]] | None = None) -> None:
        self.items = items or []
        super().__init__(message)


class ModelNotFoundError(SearchSyncError):
    """No registered model matches the given name."""


class BufferOverflowError(SearchSyncError):
    """The bulk buffer is full and cannot accept more operations."""
