"""Document store collaborators."""

from searchsync.store.base import DocumentStore, Model, Record
from searchsync.store.memory import InMemoryDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "Model",
    "Record",
]
