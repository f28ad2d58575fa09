"""Tests for the Elasticsearch client wrapper."""

from unittest.mock import AsyncMock, patch

import pytest

from searchsync.clients.elasticsearch import SearchClient
from searchsync.config import Settings
from searchsync.errors import (
    BufferOverflowError,
    DocumentNotFoundError,
    IndexNotFoundError,
    IndexOperationError,
    InvalidArgumentError,
)

CAT_MAPPINGS = {"Cat": {"properties": {"name": {"type": "keyword"}}}}


class TestCreate:
    """Tests for SearchClient.create."""

    def test_defaults_from_settings(self, settings: Settings) -> None:
        """Test that bulk options default to the settings values."""
        client = SearchClient.create(settings=settings)
        assert client.bulk_size == 10
        assert client.bulk_timeout_ms == 50

    def test_overrides(self, settings: Settings) -> None:
        """Test that options override settings."""
        client = SearchClient.create({"bulk_size": 5, "bulk_buffer_size": 20}, settings=settings)
        assert client.bulk_size == 5
        assert client.bulk_config.bulk_buffer_size == 20

    @pytest.mark.parametrize(
        ("options", "code"),
        [
            ({"bulk_size": 0}, "invalid-bulk-size"),
            ({"bulk_size": "abc"}, "invalid-bulk-size"),
            ({"bulk_timeout_ms": -1}, "invalid-bulk-timeout"),
            ({"bulk_buffer_size": 0}, "invalid-bulk-buffer-size"),
            ({"unknown": 1}, "invalid-options"),
            ("bulk_size=1", "invalid-options"),
        ],
    )
    def test_invalid_options(self, settings: Settings, options: object, code: str) -> None:
        """Test that malformed options map to their error codes."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            SearchClient.create(options, settings=settings)
        assert exc_info.value.code == code

    def test_instances_have_own_buffers(self, settings: Settings) -> None:
        """Test that clients never share a bulk buffer."""
        assert SearchClient.create(settings=settings).buffer is not SearchClient(settings).buffer


class TestConnection:
    """Tests for connect and close."""

    async def test_connect_creates_client_once(self, settings: Settings) -> None:
        """Test that the underlying client is created once and pinged."""
        with patch("searchsync.clients.elasticsearch.AsyncElasticsearch") as mock_cls:
            mock_es = AsyncMock()
            mock_es.ping = AsyncMock(return_value=True)
            mock_cls.return_value = mock_es

            client = SearchClient(settings)
            await client.connect("http://es:9200")
            await client.connect("http://es:9200")

            mock_cls.assert_called_once_with(
                hosts=["http://es:9200"],
                request_timeout=settings.elasticsearch_request_timeout,
            )
            assert mock_es.ping.await_count == 2
            assert client.client is mock_es

    async def test_connect_ping_failure(self, settings: Settings) -> None:
        """Test that an unanswered ping raises ConnectionError."""
        with patch("searchsync.clients.elasticsearch.AsyncElasticsearch") as mock_cls:
            mock_cls.return_value.ping = AsyncMock(return_value=False)

            client = SearchClient(settings)
            with pytest.raises(ConnectionError):
                await client.connect()

    @pytest.mark.parametrize("hosts", [[], [""], [1], ""])
    async def test_invalid_hosts(self, settings: Settings, hosts: object) -> None:
        """Test that malformed hosts are rejected before connecting."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            await SearchClient(settings).connect(hosts)
        assert exc_info.value.code == "invalid-host"

    def test_client_requires_connect(self, settings: Settings) -> None:
        """Test that the client property fails before connect."""
        with pytest.raises(RuntimeError):
            _ = SearchClient(settings).client

    async def test_close(self, settings: Settings, fake_es) -> None:
        """Test that close flushes the buffer and closes the connection."""
        client = SearchClient(settings)
        await client.connect()
        await client.index_doc("1", {"name": "Bingo"}, "Cat", "test-idx", use_bulk=True)

        await client.close()

        assert fake_es.closed
        assert len(fake_es.bulk_calls) == 1
        with pytest.raises(RuntimeError):
            _ = client.client

    async def test_context_manager(self, settings: Settings, fake_es) -> None:
        """Test async context manager usage."""
        async with SearchClient(settings) as client:
            assert client.client is fake_es
        assert fake_es.closed


class TestIndices:
    """Tests for index operations."""

    async def test_ensure_index_creates_once(
        self, client: SearchClient, fake_es
    ) -> None:
        """Test that ensure_index creates a missing index and keeps an existing one."""
        assert await client.ensure_index("test-idx", {"number_of_shards": 1}, CAT_MAPPINGS)
        assert not await client.ensure_index("test-idx", {}, {})

        assert fake_es.data["test-idx"]["settings"] == {"number_of_shards": 1}
        assert fake_es.data["test-idx"]["mappings"] == {
            "properties": {"doc_type": {"type": "keyword"}, "name": {"type": "keyword"}}
        }

    async def test_ensure_index_validation(self, client: SearchClient) -> None:
        """Test argument validation of ensure_index."""
        with pytest.raises(InvalidArgumentError, match="Invalid index name"):
            await client.ensure_index("Test", {}, {})
        with pytest.raises(InvalidArgumentError, match="Invalid elasticsearch index settings"):
            await client.ensure_index("test-idx", [], {})
        with pytest.raises(InvalidArgumentError, match="Invalid mapping"):
            await client.ensure_index("test-idx", {}, None)

    def test_merge_type_mappings(self, settings: Settings) -> None:
        """Test that per-type mappings merge into a single index mapping."""
        client = SearchClient(settings)

        merged = client.merge_type_mappings(
            {
                "Cat": {"properties": {"name": {"type": "keyword"}}},
                "Dog": {"properties": {"bark": {"type": "text"}}},
            }
        )

        assert merged == {
            "properties": {
                "doc_type": {"type": "keyword"},
                "name": {"type": "keyword"},
                "bark": {"type": "text"},
            }
        }

    async def test_index_exists(self, client: SearchClient) -> None:
        """Test index_exists for names and lists."""
        await client.ensure_index("test-idx", {}, {})

        assert await client.index_exists("test-idx")
        assert not await client.index_exists("other")
        assert not await client.index_exists(["test-idx", "other"])

        with pytest.raises(InvalidArgumentError):
            await client.index_exists([])

    async def test_delete_index(self, client: SearchClient) -> None:
        """Test that delete_index removes an index and fails on missing ones."""
        await client.ensure_index("test-idx", {}, {})

        response = await client.delete_index("test-idx")

        assert response["acknowledged"]
        with pytest.raises(IndexNotFoundError):
            await client.delete_index("test-idx")

    async def test_delete_index_not_acknowledged(
        self, client: SearchClient, fake_es
    ) -> None:
        """Test that an unacknowledged deletion raises IndexOperationError."""
        fake_es.indices.delete = AsyncMock(return_value={"acknowledged": False})

        with pytest.raises(IndexOperationError):
            await client.delete_index("test-idx")

    async def test_ensure_delete_index(self, client: SearchClient) -> None:
        """Test that only existing indices are deleted and reported."""
        await client.ensure_index("a", {}, {})
        await client.ensure_index("c", {}, {})

        assert await client.ensure_delete_index(["a", "b", "c"]) == ["a", "c"]
        assert await client.ensure_delete_index("a") == []

    async def test_settings_and_mapping(self, client: SearchClient) -> None:
        """Test reading back index settings and mapping."""
        await client.ensure_index("test-idx", {"number_of_shards": 1}, CAT_MAPPINGS)

        settings = await client.get_index_settings("test-idx")
        mapping = await client.get_index_mapping("test-idx", "Cat")

        assert settings["test-idx"]["settings"] == {"number_of_shards": 1}
        assert "name" in mapping["test-idx"]["mappings"]["properties"]

        with pytest.raises(IndexNotFoundError):
            await client.get_index_settings("missing")
        with pytest.raises(InvalidArgumentError):
            await client.get_index_mapping("test-idx", "")


class TestDocuments:
    """Tests for document operations."""

    @pytest.fixture
    async def index(self, client: SearchClient) -> str:
        await client.ensure_index("test-idx", {}, CAT_MAPPINGS)
        return "test-idx"

    async def test_index_and_get(
        self, client: SearchClient, fake_es, index: str
    ) -> None:
        """Test that the type is stored in the source and stripped on read."""
        response = await client.index_doc("1", {"name": "Bingo"}, "Cat", index)

        assert response["created"] is True
        assert fake_es.data[index]["docs"]["Cat:1"] == {"name": "Bingo", "doc_type": "Cat"}

        doc = await client.get_doc("1", "Cat", index)
        assert doc["_id"] == "1"
        assert doc["_source"] == {"name": "Bingo"}

        response = await client.index_doc("1", {"name": "Bongo"}, "Cat", index)
        assert response["created"] is False

    async def test_get_wrong_type(self, client: SearchClient, index: str) -> None:
        """Test that documents of another type are not found."""
        await client.index_doc("1", {"name": "Bingo"}, "Cat", index)

        with pytest.raises(DocumentNotFoundError):
            await client.get_doc("1", "Dog", index)
        assert await client.doc_exists("1", "Cat", index)
        assert not await client.doc_exists("1", "Dog", index)

    async def test_delete_wrong_type(self, client: SearchClient, index: str) -> None:
        """Test that deleting another type leaves the document in place."""
        await client.index_doc("1", {"name": "Bingo"}, "Cat", index)

        with pytest.raises(DocumentNotFoundError):
            await client.delete_doc("1", "Dog", index)

        doc = await client.get_doc("1", "Cat", index)
        assert doc["_source"] == {"name": "Bingo"}

    async def test_same_id_different_types(self, client: SearchClient, index: str) -> None:
        """Test that documents of two types sharing an id do not overwrite each other."""
        await client.index_doc("1", {"name": "Bingo"}, "Cat", index)
        response = await client.index_doc("1", {"name": "Rex"}, "Dog", index)

        assert response["created"] is True
        assert response["_id"] == "1"
        assert (await client.get_doc("1", "Cat", index))["_source"] == {"name": "Bingo"}
        assert (await client.get_doc("1", "Dog", index))["_source"] == {"name": "Rex"}

    async def test_non_dict_document(self, client: SearchClient, index: str) -> None:
        """Test that a document must be a dict."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            await client.index_doc("1", ["Bingo"], "Cat", index)
        assert exc_info.value.code == "invalid-document"

    async def test_missing_document_and_index(self, client: SearchClient, index: str) -> None:
        """Test not-found translation for documents and indices."""
        with pytest.raises(DocumentNotFoundError):
            await client.get_doc("missing", "Cat", index)
        with pytest.raises(IndexNotFoundError):
            await client.get_doc("1", "Cat", "missing-idx")

    async def test_delete(self, client: SearchClient, index: str) -> None:
        """Test that deleting twice raises DocumentNotFoundError."""
        await client.index_doc("1", {"name": "Bingo"}, "Cat", index)

        response = await client.delete_doc("1", "Cat", index)

        assert response["found"] is True
        with pytest.raises(DocumentNotFoundError):
            await client.delete_doc("1", "Cat", index)

    @pytest.mark.parametrize(
        ("args", "code"),
        [
            (("", "Cat", "test-idx"), "invalid-document-id"),
            (("1", "", "test-idx"), "invalid-type"),
            (("1", "Cat", "Test-Idx"), "invalid-index-name"),
        ],
    )
    async def test_document_validation(
        self, client: SearchClient, args: tuple, code: str
    ) -> None:
        """Test that document arguments are validated before any request."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            await client.index_doc(args[0], {}, args[1], args[2])
        assert exc_info.value.code == code

    async def test_bulk_index_is_queued(
        self, client: SearchClient, fake_es, index: str
    ) -> None:
        """Test that bulk writes return immediately and land after a flush."""
        response = await client.index_doc("1", {"name": "Bingo"}, "Cat", index, use_bulk=True)

        assert response == {"_id": "1", "result": "queued"}
        assert "Cat:1" not in fake_es.data[index]["docs"]

        await client.buffer.drain()

        assert fake_es.data[index]["docs"]["Cat:1"] == {"name": "Bingo", "doc_type": "Cat"}
        assert fake_es.bulk_calls[0][0] == {"index": {"_index": index, "_id": "Cat:1"}}

    async def test_bulk_delete(
        self, client: SearchClient, fake_es, index: str
    ) -> None:
        """Test that bulk deletes carry no document line."""
        await client.index_doc("1", {"name": "Bingo"}, "Cat", index)

        await client.delete_doc("1", "Cat", index, use_bulk=True)
        await client.buffer.drain()

        assert fake_es.bulk_calls[0] == [{"delete": {"_index": index, "_id": "Cat:1"}}]
        assert "Cat:1" not in fake_es.data[index]["docs"]

    async def test_bulk_overflow(self, settings: Settings, fake_es) -> None:
        """Test that a full buffer rejects further bulk writes."""
        client = SearchClient.create({"bulk_buffer_size": 1}, settings=settings)
        await client.connect()

        await client.index_doc("1", {"name": "Bingo"}, "Cat", "test-idx", use_bulk=True)
        with pytest.raises(BufferOverflowError):
            await client.index_doc("2", {"name": "Bongo"}, "Cat", "test-idx", use_bulk=True)

        assert client.buffer.queue_size == 1
        await client.close()

    async def test_search(self, client: SearchClient, index: str) -> None:
        """Test that search forwards the request body."""
        await client.index_doc("1", {"name": "Bingo"}, "Cat", index)
        await client.index_doc("2", {"name": "Bongo"}, "Cat", index)

        response = await client.search({"index": index, "query": {"term": {"name": "Bingo"}}})

        assert [hit["_id"] for hit in response["hits"]["hits"]] == ["1"]

    async def test_search_validation(self, client: SearchClient) -> None:
        """Test that the query must be a dict."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            await client.search("name:Bingo")
        assert exc_info.value.code == "invalid-search-query"

    async def test_search_missing_index(self, client: SearchClient) -> None:
        """Test that searching a missing index raises IndexNotFoundError."""
        with pytest.raises(IndexNotFoundError):
            await client.search({"index": "missing", "query": {"match_all": {}}})
