"""Render search index mappings from schema trees."""

import copy
import logging
from collections.abc import Mapping
from typing import Any

from searchsync.errors import InvalidArgumentError
from searchsync.schema import EmbeddedField, ModelHandle, ReferenceField, ScalarField, Schema

logger = logging.getLogger(__name__)


def render_mapping(
    schema: Schema,
    population_models: Mapping[str, ModelHandle],
    *,
    root: str | None = None,
    expanding: frozenset[str] = frozenset(),
) -> dict[str, Any] | None:
    """Render the search mapping for a schema.

    Fields contribute to the mapping in declaration order:

    1. A field with a declared mapping contributes that mapping verbatim
       (this wins over reference resolution).
    2. An embedded schema contributes its own rendered mapping.
    3. A reference whose target is a population model contributes the
       target model's rendered mapping.
    4. Anything else contributes nothing.

    Dotted paths are nested so that every object level gets exactly one
    ``properties`` envelope.

    Models already being expanded on the current path are not expanded
    again, which bounds mutually referencing models to a single unrolling.

    Args:
        schema: Schema to render.
        population_models: Models available for reference resolution, by name.
        root: Name of the model owning ``schema``; it is treated as already
            being expanded.
        expanding: Model names already being expanded by the caller.

    Returns:
        ``{"properties": {...}}``, or None if no field contributes.

    Raises:
        InvalidArgumentError: If ``schema`` is not a Schema.
    """
    if not isinstance(schema, Schema):
        raise InvalidArgumentError("invalid-schema")

    active = (expanding | {root}) if root else expanding
    return _render(schema, population_models, active)


def _render(
    schema: Schema,
    population_models: Mapping[str, ModelHandle],
    active: frozenset[str],
) -> dict[str, Any] | None:
    properties: dict[str, Any] = {}

    for field in schema:
        field_mapping = _render_field(field, population_models, active)
        if field_mapping is not None:
            _set_nested(properties, field.path, field_mapping)

    return {"properties": properties} if properties else None


def _render_field(
    field: ScalarField | ReferenceField | EmbeddedField,
    population_models: Mapping[str, ModelHandle],
    active: frozenset[str],
) -> dict[str, Any] | None:
    if field.mapping is not None:
        return copy.deepcopy(field.mapping)

    if isinstance(field, EmbeddedField):
        return _render(field.schema, population_models, active)

    if isinstance(field, ReferenceField):
        model = population_models.get(field.ref)
        if model is None:
            return None

        if field.ref in active:
            logger.debug(f"Skipping cyclic reference '{field.path}' -> '{field.ref}'")
            return None

        return _render(model.schema, population_models, active | {field.ref})

    return None


def _set_nested(properties: dict[str, Any], path: str, value: dict[str, Any]) -> None:
    """Place ``value`` at a dotted path, wrapping inner levels in ``properties``."""
    *parents, leaf = path.split(".")

    level = properties
    for key in parents:
        level = level.setdefault(key, {}).setdefault("properties", {})

    existing = level.get(leaf)
    if isinstance(existing, dict):
        level[leaf] = merge_mappings(existing, value)
    else:
        level[leaf] = value


def merge_mappings(base: dict[str, Any], other: Mapping[str, Any]) -> dict[str, Any]:
    """Deep merge ``other`` into a copy of ``base``.

    Nested dicts are merged recursively, anything else in ``other``
    replaces the value in ``base``.
    """
    result = copy.deepcopy(base)
    for key, value in other.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), dict):
            result[key] = merge_mappings(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def mapping_fields(mapping: Mapping[str, Any] | None) -> list[str]:
    """Top-level property names of a rendered mapping, in order."""
    if not mapping:
        return []
    return list(mapping.get("properties", {}))
