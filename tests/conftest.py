"""Pytest configuration and shared fixtures."""

import copy
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from elasticsearch import NotFoundError

from searchsync.clients.elasticsearch import SearchClient
from searchsync.config import Settings
from searchsync.schema import Schema
from searchsync.store import InMemoryDocumentStore
from searchsync.sync import SearchSync


def not_found_error(body: dict[str, Any]) -> NotFoundError:
    """Build the error the elasticsearch client raises on a 404 response."""
    return NotFoundError("not_found", MagicMock(status=404), body)


def index_not_found_error(index: str) -> NotFoundError:
    return not_found_error(
        {"error": {"type": "index_not_found_exception", "index": index}, "status": 404}
    )


class FakeIndices:
    """In-memory stand-in for the ``indices`` namespace of AsyncElasticsearch."""

    def __init__(self, backend: "FakeElasticsearch") -> None:
        self.backend = backend

    async def exists(self, index: str | list[str]) -> bool:
        names = [index] if isinstance(index, str) else index
        return all(name in self.backend.data for name in names)

    async def create(
        self,
        index: str,
        settings: dict[str, Any] | None = None,
        mappings: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.backend.data[index] = {
            "settings": settings or {},
            "mappings": mappings or {},
            "docs": {},
        }
        return {"acknowledged": True, "index": index}

    async def delete(self, index: str | list[str]) -> dict[str, Any]:
        names = [index] if isinstance(index, str) else index
        for name in names:
            self.backend.get_index(name)
        for name in names:
            del self.backend.data[name]
        return {"acknowledged": True}

    async def get_settings(self, index: str) -> dict[str, Any]:
        return {index: {"settings": self.backend.get_index(index)["settings"]}}

    async def get_mapping(self, index: str) -> dict[str, Any]:
        return {index: {"mappings": self.backend.get_index(index)["mappings"]}}


class FakeElasticsearch:
    """In-memory stand-in for AsyncElasticsearch covering the APIs we call."""

    def __init__(self) -> None:
        self.data: dict[str, dict[str, Any]] = {}
        self.indices = FakeIndices(self)
        self.bulk_calls: list[list[dict[str, Any]]] = []
        self.fail_ids: set[str] = set()
        self.closed = False

    def get_index(self, index: str) -> dict[str, Any]:
        if index not in self.data:
            raise index_not_found_error(index)
        return self.data[index]

    async def ping(self) -> bool:
        return True

    async def info(self) -> dict[str, Any]:
        return {"cluster_name": "fake", "version": {"number": "8.12.0"}}

    async def close(self) -> None:
        self.closed = True

    async def index(
        self, index: str, id: str, document: dict[str, Any], refresh: Any = None
    ) -> dict[str, Any]:
        docs = self.data.setdefault(index, {"settings": {}, "mappings": {}, "docs": {}})["docs"]
        created = id not in docs
        docs[id] = copy.deepcopy(document)
        return {"_index": index, "_id": id, "result": "created" if created else "updated"}

    async def delete(self, index: str, id: str, refresh: Any = None) -> dict[str, Any]:
        docs = self.get_index(index)["docs"]
        if id not in docs:
            raise not_found_error({"_index": index, "_id": id, "result": "not_found"})
        del docs[id]
        return {"_index": index, "_id": id, "result": "deleted"}

    async def get(self, index: str, id: str) -> dict[str, Any]:
        docs = self.get_index(index)["docs"]
        if id not in docs:
            raise not_found_error({"_index": index, "_id": id, "found": False})
        return {"_index": index, "_id": id, "found": True, "_source": copy.deepcopy(docs[id])}

    async def search(
        self, index: str, query: dict[str, Any] | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        docs = self.get_index(index)["docs"]
        term = (query or {}).get("term") or (query or {}).get("match") or {}

        hits = [
            {"_index": index, "_id": id, "_score": 1.0, "_source": copy.deepcopy(source)}
            for id, source in docs.items()
            if all(source.get(field) == value for field, value in term.items())
        ]
        return {"hits": {"total": {"value": len(hits)}, "hits": hits}}

    async def bulk(self, operations: list[dict[str, Any]], refresh: Any = None) -> dict[str, Any]:
        self.bulk_calls.append(copy.deepcopy(operations))
        items: list[dict[str, Any]] = []
        position = 0

        while position < len(operations):
            op, meta = next(iter(operations[position].items()))
            position += 1
            index, id = meta["_index"], meta["_id"]

            if id in self.fail_ids:
                if op != "delete":
                    position += 1
                error = {"type": "mapper_exception"}
                items.append({op: {"_id": id, "status": 400, "error": error}})
                continue

            docs = self.data.setdefault(index, {"settings": {}, "mappings": {}, "docs": {}})["docs"]
            if op == "delete":
                found = docs.pop(id, None) is not None
                items.append({op: {"_id": id, "status": 200 if found else 404}})
            else:
                docs[id] = copy.deepcopy(operations[position])
                position += 1
                items.append({op: {"_id": id, "status": 201}})

        errors = any("error" in result for item in items for result in item.values())
        return {"errors": errors, "items": items}


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        elasticsearch_hosts=["http://localhost:9200"],
        elasticsearch_index="test-idx",
        bulk_size=10,
        bulk_timeout_ms=50,
    )


@pytest.fixture
def fake_es() -> FakeElasticsearch:
    """Patch AsyncElasticsearch with an in-memory backend."""
    backend = FakeElasticsearch()
    with patch("searchsync.clients.elasticsearch.AsyncElasticsearch", return_value=backend):
        yield backend


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Create an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
async def client(settings: Settings, fake_es: FakeElasticsearch) -> SearchClient:
    """Create a client connected to the in-memory backend."""
    search_client = SearchClient(settings)
    await search_client.connect()
    yield search_client
    await search_client.close()


@pytest.fixture
def search_sync(store: InMemoryDocumentStore, settings: Settings, fake_es: FakeElasticsearch):
    """Create a synchronizer backed by the in-memory store and backend."""
    return SearchSync(store, settings=settings)


@pytest.fixture
def candy_schema() -> Schema:
    return Schema({"name": {"type": str, "search": {"mapping": {"type": "keyword"}}}})


@pytest.fixture
def cat_schema() -> Schema:
    return Schema(
        {
            "name": {"type": str, "search": {"mapping": {"type": "keyword"}}},
            "hobby": str,
            "candy": {"type": "id", "ref": "Candy"},
        }
    )
