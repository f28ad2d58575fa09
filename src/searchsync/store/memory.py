"""In-memory document store."""

import asyncio
import copy
from collections.abc import AsyncIterator

from searchsync.store.base import DocumentStore, Record


class InMemoryDocumentStore(DocumentStore):
    """Keeps records in process memory.

    Used for tests and local experiments. Records are stored as snapshots,
    so later mutation of a Record does not change the stored copy until it
    is saved again.
    """

    def __init__(self) -> None:
        super().__init__()
        self._collections: dict[str, dict[str, dict]] = {}

    async def save(self, record: Record) -> Record:
        collection = self._collections.setdefault(record.model_name, {})
        collection[record.id] = record.snapshot()
        self._fire("saved", record)
        return record

    async def remove(self, record: Record) -> None:
        self._collections.get(record.model_name, {}).pop(record.id, None)
        self._fire("removed", record)

    async def fetch_by_id(self, model_name: str, id: str) -> Record | None:
        data = self._collections.get(model_name, {}).get(id)
        model = self.models.get(model_name)
        if data is None or model is None:
            return None
        return Record(model, copy.deepcopy(data), id=id)

    async def find(self, model_name: str) -> AsyncIterator[Record]:
        model = self.models.get(model_name)
        if model is None:
            return

        for id, data in list(self._collections.get(model_name, {}).items()):
            yield Record(model, copy.deepcopy(data), id=id)
            await asyncio.sleep(0)

    def count(self, model_name: str) -> int:
        return len(self._collections.get(model_name, {}))
