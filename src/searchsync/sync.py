"""Keep document store models mirrored into a search index."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from searchsync.clients.elasticsearch import SearchClient
from searchsync.config import Settings
from searchsync.document import render_doc
from searchsync.errors import (
    BufferOverflowError,
    DocumentNotFoundError,
    InvalidArgumentError,
    ModelNotFoundError,
)
from searchsync.mapping import render_mapping
from searchsync.population import PopulationTree, render_population_tree
from searchsync.schema import Schema
from searchsync.store.base import DocumentStore, Model, Record
from searchsync.utils.logging import sync_context
from searchsync.utils.metrics import record_hook_event
from searchsync.validators import (
    is_valid_index_name,
    is_valid_mapping,
    is_valid_options,
    is_valid_settings,
)

logger = logging.getLogger(__name__)

Transform = Callable[[dict[str, Any]], Any]
ErrorListener = Callable[[Exception, Any], Any]


@dataclass
class RegisteredModel:
    """Indexing configuration of a registered model.

    Attributes:
        model: The registered model.
        mapping: Mapping contributed to the index, None if empty.
        transform: Optional function applied to rendered documents.
        index_fields: Field paths copied into indexed documents.
        population_tree: References populated into indexed documents.
    """

    model: Model
    mapping: dict[str, Any] | None
    transform: Transform | None = None
    index_fields: list[str] = field(default_factory=list)
    population_tree: PopulationTree = field(default_factory=dict)


def _is_model(value: Any) -> bool:
    return (
        isinstance(getattr(value, "name", None), str)
        and bool(value.name)
        and isinstance(getattr(value, "schema", None), Schema)
    )


class SearchSync:
    """Mirrors records of registered models into one search index.

    Saved records of registered models are rendered (with their populated
    references) and indexed; removed records are deleted from the index.
    Lifecycle hooks are subscribed per schema, so they fire for every
    model sharing a schema; records of unregistered models are ignored.

    Models must be registered for population before the models referencing
    them are registered: mappings and population trees are computed once,
    at registration.

    Example:
            >>> sync = SearchSync(store)
            >>> await sync.register_population(Candy)
            >>> await sync.register_model(Cat)
            >>> await sync.connect("http://localhost:9200", "cats")
            >>> await Cat.save(Cat.create(name="Bingo"))
    """

    def __init__(
        self,
        store: DocumentStore,
        client: SearchClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            store: Document store whose records are mirrored.
            client: Search backend client. Created from ``settings`` if omitted.
            settings: Application settings.
        """
        self.store = store
        self.settings = settings or (client.settings if client else Settings())
        self.client = client or SearchClient(self.settings)
        self.index: str | None = None
        self.index_settings: dict[str, Any] = {}
        self.registered_models: dict[str, RegisteredModel] = {}
        self.population_models: dict[str, Model] = {}
        self._unsubscribers: dict[int, Callable[[], None]] = {}
        self._error_listeners: list[ErrorListener] = []

        self.client.buffer.add_error_listener(self._emit_error)

    @classmethod
    def create(
        cls,
        store: DocumentStore,
        options: dict[str, Any] | None = None,
        settings: Settings | None = None,
    ) -> "SearchSync":
        """Create an independent synchronizer with its own client and bulk buffer.

        Args:
            store: Document store whose records are mirrored.
            options: Bulk options (see ``SearchClient.create``).
            settings: Application settings.
        """
        return cls(store, client=SearchClient.create(options, settings=settings))

    # ==================== Registration ====================

    async def register_model(
        self,
        model: Model,
        mapping: dict[str, Any] | None = None,
        transform: Transform | None = None,
    ) -> None:
        """Register a model for automatic indexing.

        Registering a model name again replaces its configuration.

        Args:
            model: Model to register.
            mapping: Static property mapping used instead of the one rendered
                from the schema.
            transform: Function (sync or async) applied to each rendered
                document before it is indexed.

        Raises:
            InvalidArgumentError: If the model, mapping or transform is invalid.
                Nothing is registered in that case.
        """
        if not _is_model(model):
            raise InvalidArgumentError("invalid-model")

        if mapping is not None and not is_valid_mapping(mapping):
            raise InvalidArgumentError("invalid-mapping")

        if transform is not None and not callable(transform):
            raise InvalidArgumentError("invalid-transform")

        if mapping is not None:
            model_mapping = {"properties": mapping} if mapping else None
        else:
            model_mapping = render_mapping(model.schema, self.population_models, root=model.name)

        entry = RegisteredModel(
            model=model,
            mapping=model_mapping,
            transform=transform,
            index_fields=model.schema.paths,
            population_tree=render_population_tree(
                model.schema, self.population_models, root=model.name
            ),
        )

        self._subscribe(model.schema)
        self.registered_models[model.name] = entry
        logger.info(f"Registered model '{model.name}' for indexing")

    async def register_population(self, model: Model) -> None:
        """Make a model available for populating references of registered models."""
        if not _is_model(model):
            raise InvalidArgumentError("invalid-model")

        self.population_models[model.name] = model
        logger.info(f"Registered model '{model.name}' for population")

    def get_mappings(self) -> dict[str, Any]:
        """Mappings of all registered models, keyed by model name."""
        return {
            name: entry.mapping
            for name, entry in self.registered_models.items()
            if entry.mapping is not None
        }

    def _subscribe(self, schema: Schema) -> None:
        if id(schema) in self._unsubscribers:
            return

        self._unsubscribers[id(schema)] = self.store.subscribe(
            schema,
            on_saved=self._on_saved,
            on_removed=self._on_removed,
        )

    # ==================== Connection ====================

    async def connect(
        self,
        hosts: str | list[str],
        index: str,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Connect to the search backend and ensure the index exists.

        The index is created with the configured settings and the merged
        mappings of every model registered so far.

        Args:
            hosts: Host URL or list of URLs.
            index: Name of the index holding all registered models.
            options: Optional ``{"settings": {...}}`` index settings.
        """
        if not is_valid_index_name(index):
            raise InvalidArgumentError("invalid-index-name")

        if not is_valid_options(options):
            raise InvalidArgumentError("invalid-options")

        settings = (options or {}).get("settings", {})
        if not is_valid_settings(settings):
            raise InvalidArgumentError("invalid-settings")

        self.index = index
        self.index_settings = settings

        await self.client.connect(hosts)
        await self.client.ensure_index(self.index, self.index_settings, self.get_mappings())

    async def close(self) -> None:
        """Unsubscribe from the document store and close the client."""
        for unsubscribe in self._unsubscribers.values():
            unsubscribe()
        self._unsubscribers.clear()

        await self.client.close()

    # ==================== Indexing ====================

    async def render(self, record: Record) -> dict[str, Any] | None:
        """Render the document indexed for a record, None if its model is unregistered."""
        entry = self.registered_models.get(record.model_name)
        if entry is None:
            return None

        doc = await render_doc(record, entry.index_fields, entry.population_tree, self.store)

        if entry.transform is not None:
            result = entry.transform(doc)
            doc = await result if asyncio.iscoroutine(result) else result

        return doc

    async def index_record(self, record: Record, use_bulk: bool = False) -> dict[str, Any] | None:
        """Index a record of a registered model.

        Returns:
            The backend acknowledgement, or None if the record's model is
            not registered.
        """
        doc = await self.render(record)
        if doc is None:
            return None

        return await self.client.index_doc(record.id, doc, record.model_name, self.index, use_bulk)

    async def remove_record(self, record: Record, use_bulk: bool = False) -> dict[str, Any] | None:
        """Delete a record of a registered model from the index."""
        if record.model_name not in self.registered_models:
            return None

        return await self.client.delete_doc(record.id, record.model_name, self.index, use_bulk)

    async def sync(self, model: Model, use_bulk: bool = True) -> int:
        """Index every record of a registered model.

        Bulk operations are drained before returning.

        Returns:
            Number of records indexed.

        Raises:
            ModelNotFoundError: If the model is not registered.
        """
        if not _is_model(model):
            raise InvalidArgumentError("invalid-model")

        if model.name not in self.registered_models:
            raise ModelNotFoundError(f"Model '{model.name}' is not registered")

        count = 0
        with sync_context(index=self.index, model=model.name):
            async for record in model.find():
                try:
                    await self.index_record(record, use_bulk)
                except BufferOverflowError:
                    await self.client.buffer.drain()
                    await self.index_record(record, use_bulk)
                count += 1

            if use_bulk:
                await self.client.buffer.drain()

            logger.info(f"Synced {count} '{model.name}' records")
        return count

    async def sync_by_id(self, model: Model, id: str) -> dict[str, Any] | None:
        """Re-index one record of a registered model, immediately.

        Raises:
            ModelNotFoundError: If the model is not registered.
            DocumentNotFoundError: If the model has no record with this id.
        """
        if not _is_model(model):
            raise InvalidArgumentError("invalid-model")

        if model.name not in self.registered_models:
            raise ModelNotFoundError(f"Model '{model.name}' is not registered")

        record = await model.find_by_id(id)
        if record is None:
            raise DocumentNotFoundError(f"No '{model.name}' record with id '{id}'")

        with sync_context(index=self.index, model=model.name):
            return await self.index_record(record)

    async def _on_saved(self, record: Record) -> None:
        if record.model_name not in self.registered_models:
            return

        with sync_context(index=self.index, model=record.model_name):
            try:
                await self.index_record(record, use_bulk=self.settings.hooks_use_bulk)
                record_hook_event("saved", True)
            except Exception as e:
                record_hook_event("saved", False)
                logger.error(f"Failed to index {record!r}: {e}", exc_info=True)
                await self._emit_error(e, record)

    async def _on_removed(self, record: Record) -> None:
        if record.model_name not in self.registered_models:
            return

        with sync_context(index=self.index, model=record.model_name):
            try:
                await self.remove_record(record, use_bulk=self.settings.hooks_use_bulk)
                record_hook_event("removed", True)
            except Exception as e:
                record_hook_event("removed", False)
                logger.error(f"Failed to remove {record!r} from index: {e}", exc_info=True)
                await self._emit_error(e, record)

    # ==================== Errors ====================

    def add_error_listener(self, listener: ErrorListener) -> None:
        """Register a callback receiving ``(error, context)`` for background failures.

        ``context`` is the record for hook failures and the list of bulk
        operations for failed bulk flushes.
        """
        self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._error_listeners:
            self._error_listeners.remove(listener)

    async def _emit_error(self, error: Exception, context: Any) -> None:
        for listener in list(self._error_listeners):
            try:
                result = listener(error, context)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error listener failed")

    # ==================== Pass-through ====================

    async def index_doc(
        self,
        id: str,
        doc: dict[str, Any],
        type: str,
        index: str | None = None,
        use_bulk: bool = False,
    ) -> dict[str, Any]:
        return await self.client.index_doc(id, doc, type, index or self.index, use_bulk)

    async def delete_doc(self, id: str, type: str, index: str | None = None) -> dict[str, Any]:
        return await self.client.delete_doc(id, type, index or self.index)

    async def get_doc(self, id: str, type: str, index: str | None = None) -> dict[str, Any]:
        return await self.client.get_doc(id, type, index or self.index)

    async def search(self, query: dict[str, Any]) -> dict[str, Any]:
        """Search the index; the connected index is used unless ``query`` names one."""
        if not isinstance(query, dict):
            raise InvalidArgumentError("invalid-search-query")

        if "index" not in query:
            query = {**query, "index": self.index}
        return await self.client.search(query)
