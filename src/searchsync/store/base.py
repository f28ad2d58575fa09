"""Document store abstractions consumed by the synchronizer."""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from searchsync.schema import Schema

logger = logging.getLogger(__name__)

RecordHandler = Callable[["Record"], Awaitable[Any] | Any]


class Record:
    """A persisted (or about to be persisted) document of a model.

    Args:
        model: Model the record belongs to.
        data: Field values. Referenced records may be given as Record
            instances or as ids.
        id: Record id; generated when omitted.
    """

    def __init__(self, model: "Model", data: dict[str, Any], id: str | None = None) -> None:
        self.model = model
        self.data = data
        self.id = id or uuid.uuid4().hex

    @property
    def model_name(self) -> str:
        return self.model.name

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def snapshot(self) -> dict[str, Any]:
        """Plain key-value copy of the record with references reduced to ids."""
        return _plain(self.data)

    def __repr__(self) -> str:
        return f"Record(model={self.model_name!r}, id={self.id!r})"


def _plain(value: Any) -> Any:
    if isinstance(value, Record):
        return value.id
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return copy.deepcopy(value)


class Model:
    """A named collection of records sharing a schema."""

    def __init__(self, name: str, schema: Schema, store: "DocumentStore") -> None:
        self.name = name
        self.schema = schema
        self.store = store

    def create(self, **data: Any) -> Record:
        """Build a new, unsaved record."""
        return Record(self, data)

    async def save(self, record: Record) -> Record:
        return await self.store.save(record)

    async def remove(self, record: Record) -> None:
        await self.store.remove(record)

    async def find_by_id(self, id: str) -> Record | None:
        return await self.store.fetch_by_id(self.name, id)

    def find(self) -> AsyncIterator[Record]:
        return self.store.find(self.name)

    def __repr__(self) -> str:
        return f"Model({self.name!r})"


class DocumentStore(ABC):
    """Base class for document stores.

    Lifecycle hooks are attached to schemas, not models: a subscription on
    a schema fires for records of every model built from it. Handlers run
    after the write completed, as background tasks.
    """

    def __init__(self) -> None:
        self.models: dict[str, Model] = {}
        self._subscriptions: dict[int, list[tuple[RecordHandler | None, RecordHandler | None]]] = {}
        self._hook_tasks: set[asyncio.Task[Any]] = set()

    def model(self, name: str, schema: Schema) -> Model:
        """Declare a model backed by this store."""
        model = Model(name, schema, self)
        self.models[name] = model
        return model

    @abstractmethod
    async def save(self, record: Record) -> Record:
        """Persist a record and fire saved hooks."""

    @abstractmethod
    async def remove(self, record: Record) -> None:
        """Delete a record and fire removed hooks."""

    @abstractmethod
    async def fetch_by_id(self, model_name: str, id: str) -> Record | None:
        """Fetch a record, or None if it does not exist."""

    @abstractmethod
    def find(self, model_name: str) -> AsyncIterator[Record]:
        """Iterate over all records of a model."""

    def subscribe(
        self,
        schema: Schema,
        on_saved: RecordHandler | None = None,
        on_removed: RecordHandler | None = None,
    ) -> Callable[[], None]:
        """Subscribe to saved/removed events of every model using ``schema``.

        Args:
            schema: Schema whose records should be observed.
            on_saved: Called with each record after it was saved.
            on_removed: Called with each record after it was removed.

        Returns:
            Callable that cancels the subscription.
        """
        entry = (on_saved, on_removed)
        handlers = self._subscriptions.setdefault(id(schema), [])
        handlers.append(entry)

        def unsubscribe() -> None:
            if entry in handlers:
                handlers.remove(entry)

        return unsubscribe

    def _fire(self, event: str, record: Record) -> None:
        for on_saved, on_removed in list(self._subscriptions.get(id(record.model.schema), [])):
            handler = on_saved if event == "saved" else on_removed
            if handler is None:
                continue

            task = asyncio.ensure_future(_call(handler, record))
            self._hook_tasks.add(task)
            task.add_done_callback(self._hook_done)

    def _hook_done(self, task: asyncio.Task[Any]) -> None:
        self._hook_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Document store hook failed", exc_info=task.exception())

    async def wait_for_hooks(self) -> None:
        """Wait until every pending hook handler has finished."""
        while self._hook_tasks:
            await asyncio.gather(*list(self._hook_tasks), return_exceptions=True)


async def _call(handler: RecordHandler, record: Record) -> Any:
    result = handler(record)
    if asyncio.iscoroutine(result):
        return await result
    return result
