"""Render population trees: the fetch plan for reference fields."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from searchsync.errors import InvalidArgumentError
from searchsync.mapping import mapping_fields, render_mapping
from searchsync.schema import EmbeddedField, ModelHandle, ReferenceField, Schema


class PopulationNode(BaseModel):
    """How to populate one reference field.

    Attributes:
        model: Name of the referenced model.
        many: True when the field holds a list of references.
        fields: Fields of the referenced record to copy into the document.
        paths: Population tree of the referenced model, None when empty.
    """

    model_config = ConfigDict(frozen=True)

    model: str
    many: bool = False
    fields: list[str] = Field(default_factory=list)
    paths: dict[str, "PopulationNode"] | None = None

    def as_dict(self) -> dict[str, Any]:
        """Plain ``{fields, paths?}`` form of this node."""
        result: dict[str, Any] = {"fields": list(self.fields)}
        if self.paths:
            result["paths"] = {path: node.as_dict() for path, node in self.paths.items()}
        return result


PopulationTree = dict[str, PopulationNode]


def render_population_tree(
    schema: Schema,
    population_models: Mapping[str, ModelHandle],
    *,
    root: str | None = None,
) -> PopulationTree:
    """Build the population tree for a schema.

    Only reference fields whose target is a population model produce
    entries. References inside embedded schemas are keyed by their full
    dotted path through the embedded field. References carrying their own
    declared mapping are indexed as-is and never populated.

    Args:
        schema: Schema to walk.
        population_models: Models available for reference resolution, by name.
        root: Name of the model owning ``schema``; it is treated as already
            being expanded.

    Returns:
        Mapping of reference path to PopulationNode; empty if nothing resolves.

    Raises:
        InvalidArgumentError: If ``schema`` is not a Schema.
    """
    if not isinstance(schema, Schema):
        raise InvalidArgumentError("invalid-schema")

    active = frozenset({root}) if root else frozenset()
    return _render(schema, population_models, active)


def _render(
    schema: Schema,
    population_models: Mapping[str, ModelHandle],
    active: frozenset[str],
    prefix: str = "",
) -> PopulationTree:
    tree: PopulationTree = {}

    for field in schema:
        path = f"{prefix}{field.path}"

        if isinstance(field, EmbeddedField):
            tree.update(_render(field.schema, population_models, active, prefix=f"{path}."))
            continue

        if not isinstance(field, ReferenceField) or field.mapping is not None:
            continue

        model = population_models.get(field.ref)
        if model is None or field.ref in active:
            continue

        expanded = active | {field.ref}
        sub_tree = _render(model.schema, population_models, expanded)

        tree[path] = PopulationNode(
            model=field.ref,
            many=field.many,
            fields=mapping_fields(
                render_mapping(model.schema, population_models, expanding=expanded)
            ),
            paths=sub_tree or None,
        )

    return tree
