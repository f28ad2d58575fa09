"""Render records into the plain documents sent to the search backend."""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from searchsync.population import PopulationNode
from searchsync.store.base import DocumentStore, Record

logger = logging.getLogger(__name__)

_MISSING = object()


async def render_doc(
    record: Record,
    index_fields: Sequence[str],
    population_tree: Mapping[str, PopulationNode],
    store: DocumentStore,
) -> dict[str, Any]:
    """Render a record into an indexable document.

    Copies every index field from the record snapshot (absent fields are
    skipped), then replaces each reference in the population tree with the
    rendered referenced record(s).

    A reference whose target no longer exists is omitted: a single reference
    field is dropped from the document, a missing element of a reference
    list is dropped from the list.

    Args:
        record: Record to render.
        index_fields: Dotted field paths to copy.
        population_tree: Reference fields to populate.
        store: Store used to fetch referenced records.

    Returns:
        The document body.
    """
    snapshot = record.snapshot()
    document: dict[str, Any] = {}

    for path in index_fields:
        value = get_path(snapshot, path)
        if value is not _MISSING:
            set_path(document, path, value)

    for path, node in population_tree.items():
        await _populate(document, path.split("."), node, store)

    return document


def get_path(data: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path, returning a sentinel when any segment is absent."""
    value: Any = data
    for key in path.split("."):
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]
    return value


def set_path(data: dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path, creating intermediate objects."""
    *parents, leaf = path.split(".")
    level = data
    for key in parents:
        child = level.get(key)
        if not isinstance(child, dict):
            child = level[key] = {}
        level = child
    level[leaf] = value


async def _populate(
    container: Any,
    parts: list[str],
    node: PopulationNode,
    store: DocumentStore,
) -> None:
    # Embedded lists are populated element by element
    if isinstance(container, list):
        await asyncio.gather(*(_populate(item, parts, node, store) for item in container))
        return

    if not isinstance(container, dict):
        return

    key = parts[0]
    if key not in container:
        return

    if len(parts) > 1:
        await _populate(container[key], parts[1:], node, store)
        return

    populated = await _resolve(container[key], node, store)
    if populated is _MISSING:
        del container[key]
    else:
        container[key] = populated


async def _resolve(value: Any, node: PopulationNode, store: DocumentStore) -> Any:
    if value is None:
        return None

    if node.many or isinstance(value, list):
        ids = value if isinstance(value, list) else [value]
        records = await asyncio.gather(*(_fetch(store, node.model, id) for id in ids))
        return list(
            await asyncio.gather(
                *(_render_ref(ref, node, store) for ref in records if ref is not None)
            )
        )

    ref = await _fetch(store, node.model, value)
    if ref is None:
        return _MISSING
    return await _render_ref(ref, node, store)


async def _fetch(store: DocumentStore, model_name: str, id: Any) -> Record | None:
    if not isinstance(id, str):
        return None

    ref = await store.fetch_by_id(model_name, id)
    if ref is None:
        logger.warning(f"Referenced {model_name} '{id}' not found, omitting it")
    return ref


async def _render_ref(ref: Record, node: PopulationNode, store: DocumentStore) -> dict[str, Any]:
    return await render_doc(ref, node.fields, node.paths or {}, store)
