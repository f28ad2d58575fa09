"""Schema trees and field classification.

A ``Schema`` is built from a raw definition once. Every declared path is
classified into exactly one of three field kinds:

- ``ScalarField``: a primitive value, optionally annotated with a search
  mapping.
- ``ReferenceField``: an id (or list of ids) pointing at records of another
  model.
- ``EmbeddedField``: a nested schema stored by value.

Raw definitions accept the following shapes::

    Schema({
        "name": {"type": str, "search": {"mapping": {"type": "keyword"}}},
        "age": int,
        "candy": {"type": "id", "ref": "Candy"},
        "friends": [{"type": "id", "ref": "Cat"}],
        "songs": [SongSchema],
        "address": {"city": {"type": str}},
    })

Nested plain objects (dicts without ``type`` or ``ref``) are flattened into
dotted paths such as ``address.city``.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, Union

from searchsync.errors import InvalidArgumentError

# Annotation block key inside a field definition
SEARCH_KEY = "search"


@dataclass(frozen=True)
class ScalarField:
    """A primitive field.

    Attributes:
        path: Dotted field path.
        type: Declared primitive type.
        mapping: Search mapping declared on the field, if any.
        populate: Populate flag from the annotation block.
    """

    path: str
    type: Any = None
    mapping: dict[str, Any] | None = None
    populate: bool = False


@dataclass(frozen=True)
class ReferenceField:
    """A reference to records of another model.

    Attributes:
        path: Dotted field path.
        ref: Name of the referenced model.
        many: True for a one-to-many list of references.
        mapping: Search mapping declared on the field, if any.
    """

    path: str
    ref: str
    many: bool = False
    mapping: dict[str, Any] | None = None


@dataclass(frozen=True)
class EmbeddedField:
    """A sub-document schema embedded by value."""

    path: str
    schema: "Schema"
    many: bool = True

    @property
    def mapping(self) -> None:
        return None


Field = Union[ScalarField, ReferenceField, EmbeddedField]


class ModelHandle(Protocol):
    """Anything that exposes a model name and its schema."""

    name: str
    schema: "Schema"


class Schema:
    """An ordered, classified schema tree.

    Schemas compare by identity: two models built from the same schema
    object share its lifecycle hooks.

    Args:
        definition: Raw field definitions keyed by field name.

    Raises:
        InvalidArgumentError: If the definition cannot be classified.
    """

    def __init__(self, definition: Mapping[str, Any]) -> None:
        if not isinstance(definition, Mapping):
            raise InvalidArgumentError("invalid-schema")
        self.definition = definition
        self.tree: dict[str, Field] = dict(_classify_tree(definition))

    def __iter__(self) -> Iterator[Field]:
        return iter(self.tree.values())

    def __len__(self) -> int:
        return len(self.tree)

    def __repr__(self) -> str:
        return f"Schema({self.paths!r})"

    @property
    def paths(self) -> list[str]:
        """Declared field paths in declaration order."""
        return list(self.tree)


def _classify_tree(definition: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Field]]:
    for key, value in definition.items():
        if not isinstance(key, str) or not key:
            raise InvalidArgumentError("invalid-schema")

        path = f"{prefix}{key}"

        if _is_nested_object(value):
            yield from _classify_tree(value, prefix=f"{path}.")
        else:
            yield path, classify_field(path, value)


def _is_nested_object(value: Any) -> bool:
    return isinstance(value, Mapping) and "type" not in value and "ref" not in value


def _annotation(value: Mapping[str, Any]) -> Mapping[str, Any]:
    annotation = value.get(SEARCH_KEY) or {}
    if not isinstance(annotation, Mapping):
        raise InvalidArgumentError("invalid-schema")
    return annotation


def _declared_mapping(value: Mapping[str, Any]) -> dict[str, Any] | None:
    mapping = _annotation(value).get("mapping")
    if mapping is None:
        return None
    if not isinstance(mapping, dict):
        raise InvalidArgumentError("invalid-mapping")
    return mapping


def classify_field(path: str, value: Any) -> Field:
    """Classify a raw field definition.

    Embedded detection takes precedence over reference detection when the
    definition is a sequence.

    Args:
        path: Dotted path of the field.
        value: Raw field definition.

    Returns:
        The classified field.

    Raises:
        InvalidArgumentError: If the definition matches no field kind.
    """
    if isinstance(value, Schema):
        return EmbeddedField(path=path, schema=value, many=False)

    if isinstance(value, (list, tuple)):
        if len(value) != 1:
            raise InvalidArgumentError("invalid-schema")

        element = value[0]
        if isinstance(element, Schema):
            return EmbeddedField(path=path, schema=element, many=True)

        if isinstance(element, Mapping) and "ref" in element:
            return _reference(path, element, many=True)

        # A list of primitives behaves like a scalar for indexing purposes
        if isinstance(element, Mapping):
            return ScalarField(
                path=path,
                type=[element.get("type")],
                mapping=_declared_mapping(element),
                populate=bool(_annotation(element).get("populate", False)),
            )
        return ScalarField(path=path, type=[element])

    if isinstance(value, Mapping):
        if "ref" in value:
            return _reference(path, value, many=False)

        return ScalarField(
            path=path,
            type=value.get("type"),
            mapping=_declared_mapping(value),
            populate=bool(_annotation(value).get("populate", False)),
        )

    if isinstance(value, type) or isinstance(value, str):
        return ScalarField(path=path, type=value)

    raise InvalidArgumentError("invalid-schema")


def _reference(path: str, value: Mapping[str, Any], many: bool) -> ReferenceField:
    ref = value["ref"]
    if not isinstance(ref, str) or not ref:
        raise InvalidArgumentError("invalid-schema")
    return ReferenceField(path=path, ref=ref, many=many, mapping=_declared_mapping(value))
