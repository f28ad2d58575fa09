"""Async Elasticsearch client wrapper with bulk buffering."""

import logging
from collections.abc import Mapping
from typing import Any

from elasticsearch import AsyncElasticsearch
from elasticsearch import NotFoundError as ESNotFoundError
from pydantic import ValidationError

from searchsync.config import Settings
from searchsync.errors import (
    DocumentNotFoundError,
    IndexNotFoundError,
    IndexOperationError,
    InvalidArgumentError,
)
from searchsync.indexing.bulk import BulkAction, BulkBuffer, BulkConfig
from searchsync.mapping import merge_mappings
from searchsync.utils.metrics import track_request
from searchsync.validators import (
    is_valid_id,
    is_valid_index_name,
    is_valid_mapping,
    is_valid_options,
    is_valid_settings,
    is_valid_type,
)

logger = logging.getLogger(__name__)

# Bulk option name -> error code raised when it fails validation
BULK_OPTION_CODES: dict[str, str] = {
    "bulk_size": "invalid-bulk-size",
    "bulk_timeout_ms": "invalid-bulk-timeout",
    "bulk_buffer_size": "invalid-bulk-buffer-size",
}


def _is_index_not_found(error: ESNotFoundError) -> bool:
    body = getattr(error, "body", None)
    if isinstance(body, Mapping) and isinstance(body.get("error"), Mapping):
        return body["error"].get("type") == "index_not_found_exception"
    return "index_not_found_exception" in str(error)


def _not_found(error: ESNotFoundError, index: Any, id: str | None = None) -> Exception:
    if id is None or _is_index_not_found(error):
        return IndexNotFoundError(f"Index '{index}' not found")
    return DocumentNotFoundError(f"Document '{id}' not found in index '{index}'")


def _body(response: Any) -> dict[str, Any]:
    return dict(getattr(response, "body", response))


def doc_id(type: str, id: str) -> str:
    """Backend ``_id`` of a typed document. Ids are unique per type, not per index."""
    return f"{type}:{id}"


class SearchClient:
    """Wrapper around AsyncElasticsearch with lifecycle management.

    Documents carry a logical type. Elasticsearch indices hold a single
    mapping type, so the type is written to ``settings.type_field`` in the
    document source and prefixed to the backend ``_id`` (see ``doc_id``).
    Documents of different types never share an ``_id``; responses report
    the caller's id.

    Every instance owns its own BulkBuffer; instances never share queued
    operations.
    """

    def __init__(
        self, settings: Settings | None = None, bulk_config: BulkConfig | None = None
    ) -> None:
        """Initialize the client wrapper.

        Args:
            settings: Application settings containing Elasticsearch configuration.
            bulk_config: Bulk buffer configuration. Defaults to the bulk
                values of ``settings``.
        """
        self.settings = settings or Settings()
        self.bulk_config = bulk_config or BulkConfig(
            bulk_size=self.settings.bulk_size,
            bulk_timeout_ms=self.settings.bulk_timeout_ms,
            bulk_buffer_size=self.settings.bulk_buffer_size,
        )
        self.buffer = BulkBuffer(self.bulk_config, self.bulk)
        self._client: AsyncElasticsearch | None = None

    @classmethod
    def create(
        cls, options: dict[str, Any] | None = None, settings: Settings | None = None
    ) -> "SearchClient":
        """Create a client with validated bulk options.

        Args:
            options: Optional ``bulk_size``, ``bulk_timeout_ms`` and
                ``bulk_buffer_size`` overrides.
            settings: Application settings.

        Raises:
            InvalidArgumentError: If the options are malformed.
        """
        if not is_valid_options(options):
            raise InvalidArgumentError("invalid-options")

        settings = settings or Settings()
        values: dict[str, Any] = {
            "bulk_size": settings.bulk_size,
            "bulk_timeout_ms": settings.bulk_timeout_ms,
            "bulk_buffer_size": settings.bulk_buffer_size,
            **(options or {}),
        }

        try:
            bulk_config = BulkConfig(**values)
        except ValidationError as e:
            field = str(e.errors()[0]["loc"][0]) if e.errors()[0]["loc"] else ""
            raise InvalidArgumentError(BULK_OPTION_CODES.get(field, "invalid-options")) from e

        return cls(settings=settings, bulk_config=bulk_config)

    @property
    def bulk_size(self) -> int:
        return self.bulk_config.bulk_size

    @property
    def bulk_timeout_ms(self) -> int:
        return self.bulk_config.bulk_timeout_ms

    @property
    def type_field(self) -> str:
        return self.settings.type_field

    async def connect(self, hosts: str | list[str] | None = None) -> None:
        """Connect to Elasticsearch and verify the connection with a ping.

        The underlying client is created once; later calls only ping.

        Args:
            hosts: Host URL or list of URLs. Defaults to the configured hosts.

        Raises:
            InvalidArgumentError: If ``hosts`` is malformed.
            ConnectionError: If the cluster does not answer the ping.
        """
        hosts = hosts if hosts is not None else self.settings.elasticsearch_hosts
        if isinstance(hosts, str):
            hosts = [hosts]
        if not hosts or not all(isinstance(host, str) and host for host in hosts):
            raise InvalidArgumentError("invalid-host")

        if self._client is None:
            logger.info(f"Connecting to Elasticsearch at {hosts}")
            self._client = AsyncElasticsearch(
                hosts=hosts,
                request_timeout=self.settings.elasticsearch_request_timeout,
            )

        if not await self._client.ping():
            raise ConnectionError(f"Elasticsearch at {hosts} did not answer ping")

        logger.info("Successfully connected to Elasticsearch")

    async def close(self) -> None:
        """Flush pending bulk operations and close the connection."""
        await self.buffer.close()

        if self._client is not None:
            logger.info("Closing Elasticsearch client connection")
            await self._client.close()
            self._client = None

    @property
    def client(self) -> AsyncElasticsearch:
        """Get the underlying AsyncElasticsearch instance.

        Raises:
            RuntimeError: If client is not connected.
        """
        if self._client is None:
            raise RuntimeError("Elasticsearch client not connected. Call connect() first.")
        return self._client

    # ==================== Indices ====================

    @track_request("index_exists")
    async def index_exists(self, index: str | list[str]) -> bool:
        """Check if an index (or every index of a list) exists."""
        if not is_valid_index_name(index, allow_list=True):
            raise InvalidArgumentError("invalid-index-name")

        return bool(await self.client.indices.exists(index=index))

    @track_request("ensure_index")
    async def ensure_index(
        self,
        index: str,
        settings: dict[str, Any],
        mappings: dict[str, Any],
    ) -> bool:
        """Ensure an index exists, creating it with settings and mappings if not.

        Args:
            index: Index name.
            settings: Index settings.
            mappings: Per-type mappings (``{type: {"properties": ...}}``) or a
                single ``{"properties": ...}`` mapping.

        Returns:
            True if the index was created, False if it already existed.
        """
        if not is_valid_index_name(index):
            raise InvalidArgumentError("invalid-index-name")

        if not is_valid_settings(settings):
            raise InvalidArgumentError("invalid-settings")

        if not is_valid_mapping(mappings):
            raise InvalidArgumentError("invalid-mapping")

        if await self.index_exists(index):
            logger.info(f"Index '{index}' already exists")
            return False

        logger.info(f"Creating index '{index}'")
        await self.client.indices.create(
            index=index,
            settings=settings or None,
            mappings=self.merge_type_mappings(mappings),
        )
        return True

    def merge_type_mappings(self, mappings: dict[str, Any]) -> dict[str, Any]:
        """Merge per-type mappings into the single mapping of an index.

        The type field is always mapped as a keyword.
        """
        merged: dict[str, Any] = {"properties": {self.type_field: {"type": "keyword"}}}

        if "properties" in mappings:
            return merge_mappings(merged, mappings)

        for type_mapping in mappings.values():
            if isinstance(type_mapping, dict):
                merged = merge_mappings(merged, type_mapping)
        return merged

    @track_request("delete_index")
    async def delete_index(self, index: str | list[str]) -> dict[str, Any]:
        """Delete an index or a list of indices.

        Raises:
            IndexNotFoundError: If an index does not exist.
            IndexOperationError: If the deletion was not acknowledged.
        """
        if not is_valid_index_name(index, allow_list=True):
            raise InvalidArgumentError("invalid-index-name")

        try:
            response = _body(await self.client.indices.delete(index=index))
        except ESNotFoundError as e:
            raise _not_found(e, index) from e

        if not response.get("acknowledged"):
            raise IndexOperationError(f"Deletion of index '{index}' was not acknowledged")
        return response

    async def ensure_delete_index(self, index: str | list[str]) -> list[str]:
        """Delete whichever of the given indices exist.

        Returns:
            Names of the deleted indices.
        """
        if not is_valid_index_name(index, allow_list=True):
            raise InvalidArgumentError("invalid-index-name")

        names = [index] if isinstance(index, str) else list(index)
        deleted: list[str] = []
        for name in names:
            if await self.index_exists(name):
                await self.delete_index(name)
                deleted.append(name)
        return deleted

    @track_request("get_index_settings")
    async def get_index_settings(self, index: str) -> dict[str, Any]:
        if not is_valid_index_name(index):
            raise InvalidArgumentError("invalid-index-name")

        try:
            return _body(await self.client.indices.get_settings(index=index))
        except ESNotFoundError as e:
            raise _not_found(e, index) from e

    @track_request("get_index_mapping")
    async def get_index_mapping(self, index: str, type: str | None = None) -> dict[str, Any]:
        """Get the mapping of an index.

        ``type`` is validated only: an index holds one mapping shared by all
        document types.
        """
        if not is_valid_index_name(index):
            raise InvalidArgumentError("invalid-index-name")

        if type is not None and not is_valid_type(type):
            raise InvalidArgumentError("invalid-type")

        try:
            return _body(await self.client.indices.get_mapping(index=index))
        except ESNotFoundError as e:
            raise _not_found(e, index) from e

    # ==================== Documents ====================

    def _validate_document_args(self, id: Any, type: Any, index: Any) -> None:
        if not is_valid_id(id):
            raise InvalidArgumentError("invalid-document-id")

        if not is_valid_type(type):
            raise InvalidArgumentError("invalid-type")

        if not is_valid_index_name(index):
            raise InvalidArgumentError("invalid-index-name")

    async def index_doc(
        self,
        id: str,
        doc: dict[str, Any],
        type: str,
        index: str,
        use_bulk: bool = False,
    ) -> dict[str, Any]:
        """Index (create or replace) a document.

        With ``use_bulk`` the operation is queued on the bulk buffer and the
        call returns once queued; failures of the later flush are reported
        to the buffer's error listeners only.

        Returns:
            The backend acknowledgement (with a ``created`` flag), or
            ``{"_id": id, "result": "queued"}`` for bulk operations.

        Raises:
            InvalidArgumentError: On malformed arguments.
            BufferOverflowError: If the bulk buffer is full.
        """
        self._validate_document_args(id, type, index)

        if not isinstance(doc, dict):
            raise InvalidArgumentError("invalid-document")

        if use_bulk:
            self.buffer.enqueue(BulkAction(op="index", index=index, type=type, id=id), doc)
            return {"_id": id, "result": "queued"}

        return await self._index_now(id, doc, type, index)

    @track_request("index")
    async def _index_now(
        self, id: str, doc: dict[str, Any], type: str, index: str
    ) -> dict[str, Any]:
        response = _body(
            await self.client.index(
                index=index,
                id=doc_id(type, id),
                document={**doc, self.type_field: type},
                refresh=self.settings.elasticsearch_refresh,
            )
        )
        response["_id"] = id
        response.setdefault("created", response.get("result") == "created")
        return response

    async def delete_doc(
        self, id: str, type: str, index: str, use_bulk: bool = False
    ) -> dict[str, Any]:
        """Delete a document.

        Returns:
            The backend acknowledgement (with a ``found`` flag), or
            ``{"_id": id, "result": "queued"}`` for bulk operations.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            IndexNotFoundError: If the index does not exist.
        """
        self._validate_document_args(id, type, index)

        if use_bulk:
            self.buffer.enqueue(BulkAction(op="delete", index=index, type=type, id=id))
            return {"_id": id, "result": "queued"}

        return await self._delete_now(id, type, index)

    @track_request("delete")
    async def _delete_now(self, id: str, type: str, index: str) -> dict[str, Any]:
        try:
            response = _body(
                await self.client.delete(
                    index=index, id=doc_id(type, id), refresh=self.settings.elasticsearch_refresh
                )
            )
        except ESNotFoundError as e:
            raise _not_found(e, index, id) from e

        response["_id"] = id
        response.setdefault("found", response.get("result") == "deleted")
        return response

    @track_request("get")
    async def get_doc(self, id: str, type: str, index: str) -> dict[str, Any]:
        """Get a document of the given type.

        The type field is removed from the returned ``_source``.

        Raises:
            DocumentNotFoundError: If no document of that type has this id.
            IndexNotFoundError: If the index does not exist.
        """
        self._validate_document_args(id, type, index)

        try:
            response = _body(await self.client.get(index=index, id=doc_id(type, id)))
        except ESNotFoundError as e:
            raise _not_found(e, index, id) from e

        source = dict(response.get("_source") or {})
        stored_type = source.pop(self.type_field, None)
        if stored_type is not None and stored_type != type:
            raise DocumentNotFoundError(f"Document '{id}' of type '{type}' not found")

        response["_id"] = id
        response["_source"] = source
        return response

    async def doc_exists(self, id: str, type: str, index: str) -> bool:
        try:
            await self.get_doc(id, type, index)
        except DocumentNotFoundError:
            return False
        return True

    @track_request("search")
    async def search(self, query: dict[str, Any]) -> dict[str, Any]:
        """Run a search request.

        Args:
            query: Keyword arguments of the search API, e.g.
                ``{"index": "cats", "query": {"match": {"name": "Bingo"}}}``.
        """
        if not isinstance(query, dict):
            raise InvalidArgumentError("invalid-search-query")

        try:
            response = _body(await self.client.search(**query))
        except ESNotFoundError as e:
            raise _not_found(e, query.get("index")) from e

        for hit in response.get("hits", {}).get("hits", []):
            self._strip_type_prefix(hit)
        return response

    def _strip_type_prefix(self, hit: dict[str, Any]) -> None:
        type = (hit.get("_source") or {}).get(self.type_field)
        if isinstance(type, str) and str(hit.get("_id", "")).startswith(f"{type}:"):
            hit["_id"] = hit["_id"][len(type) + 1 :]

    @track_request("bulk")
    async def bulk(self, body: list[dict[str, Any]]) -> dict[str, Any]:
        """Submit a bulk request.

        Action lines may carry a ``_type``. It is prefixed to the ``_id`` and
        moved into the source of the document that follows.

        Args:
            body: Alternating action lines and documents.
        """
        operations: list[dict[str, Any]] = []
        position = 0

        while position < len(body):
            op, meta = next(iter(body[position].items()))
            meta = dict(meta)
            type = meta.pop("_type", None)
            if type is not None:
                meta["_id"] = doc_id(type, meta["_id"])
            operations.append({op: meta})
            position += 1

            if op == "delete":
                continue

            doc = dict(body[position])
            if type is not None and op in ("index", "create"):
                doc[self.type_field] = type
            operations.append(doc)
            position += 1

        return _body(
            await self.client.bulk(
                operations=operations, refresh=self.settings.elasticsearch_refresh
            )
        )

    async def __aenter__(self) -> "SearchClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
