"""Argument validators shared by every public entry point.

All functions are pure predicates. Callers raise ``InvalidArgumentError``
when one of them returns False.
"""

from typing import Any


def is_valid_index_name(value: Any, allow_list: bool = False) -> bool:
    """Check if a value is a valid index name.

    Index names must be non-empty lowercase strings. With ``allow_list``
    a list or tuple of names is accepted when every element is valid.
    An empty list is rejected: an operation on no index at all would
    address every index on the cluster.

    Args:
        value: Candidate index name (or list of names).
        allow_list: Accept a sequence of index names.

    Returns:
        True if the value is a valid index name.
    """
    if allow_list and isinstance(value, (list, tuple)):
        return len(value) > 0 and all(is_valid_index_name(name) for name in value)

    return isinstance(value, str) and value != "" and value.lower() == value


def is_valid_settings(value: Any) -> bool:
    """Check if a value is a valid index settings object."""
    return isinstance(value, dict)


def is_valid_mapping(value: Any) -> bool:
    """Check if a value is a valid mapping object."""
    return isinstance(value, dict)


def is_valid_type(value: Any) -> bool:
    """Check if a value is a valid document type name."""
    return isinstance(value, str) and value != ""


def is_valid_id(value: Any) -> bool:
    """Check if a value is a valid document id."""
    return isinstance(value, str) and value != ""


def is_valid_options(value: Any) -> bool:
    """Options are either omitted or a plain dict."""
    return value is None or isinstance(value, dict)
