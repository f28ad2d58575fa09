"""Search backend clients."""

from searchsync.clients.elasticsearch import SearchClient

__all__ = ["SearchClient"]
