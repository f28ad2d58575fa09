"""Mirror document store models into an Elasticsearch index."""

from searchsync.clients.elasticsearch import SearchClient
from searchsync.config import Settings, get_settings
from searchsync.errors import (
    BufferOverflowError,
    DocumentNotFoundError,
    IndexNotFoundError,
    IndexOperationError,
    InvalidArgumentError,
    ModelNotFoundError,
    SearchSyncError,
)
from searchsync.schema import Schema
from searchsync.store import DocumentStore, InMemoryDocumentStore, Model, Record
from searchsync.sync import RegisteredModel, SearchSync

__version__ = "0.1.0"

__all__ = [
    "BufferOverflowError",
    "DocumentNotFoundError",
    "DocumentStore",
    "InMemoryDocumentStore",
    "IndexNotFoundError",
    "IndexOperationError",
    "InvalidArgumentError",
    "Model",
    "ModelNotFoundError",
    "Record",
    "RegisteredModel",
    "Schema",
    "SearchClient",
    "SearchSync",
    "SearchSyncError",
    "Settings",
    "get_settings",
]
