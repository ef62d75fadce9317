"""Typed views over resolved Foundation values.

The resolver leaves Foundation objects (strings, data, collections, URLs,
UUIDs) as GenericObject nodes so that identity is preserved. These helpers
turn them into plain Python values, dispatching on the closed set of class
names the resolver recognizes. A value of the wrong kind raises
``CoercionError``; the projector decides whether that is recoverable.
"""

import uuid
from typing import Any, List, Tuple
from urllib.parse import urljoin

from .archive import (
    ARRAY_CLASSES,
    DATA_CLASSES,
    DICTIONARY_CLASSES,
    SET_CLASSES,
    STRING_CLASSES,
    URL_CLASS,
    UUID_CLASS,
    GenericObject,
)


class CoercionError(TypeError):
    """Raised when a resolved value is not of the requested Foundation kind."""

    def __init__(self, expected: str, value: Any):
        self.expected = expected
        self.found = describe(value)
        super().__init__(f"expected {expected}, got {self.found}")


def describe(value: Any) -> str:
    """Short human-readable kind of a resolved value (for messages)."""
    if isinstance(value, GenericObject):
        return value.class_name or "untagged object"
    if value is None:
        return "null"
    return type(value).__name__


def _is(value: Any, names) -> bool:
    return isinstance(value, GenericObject) and value.class_name in names


def as_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if _is(value, STRING_CLASSES):
        return value.get("NS.string")
    raise CoercionError("string", value)


def as_data(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if _is(value, DATA_CLASSES):
        return value.get("NS.data")
    raise CoercionError("data", value)


def as_integer(value: Any) -> int:
    # bool is an int subclass but never a valid archived integer here
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise CoercionError("integer", value)


def is_collection(value: Any) -> bool:
    return isinstance(value, list) or _is(value, ARRAY_CLASSES | SET_CLASSES)


def is_dictionary(value: Any) -> bool:
    return _is(value, DICTIONARY_CLASSES)


def as_elements(value: Any) -> List[Any]:
    """Elements of an array, set or ordered set (archive order)."""
    if isinstance(value, list):
        return list(value)
    if _is(value, ARRAY_CLASSES | SET_CLASSES):
        return list(value.get("NS.objects", []))
    raise CoercionError("array or set", value)


def as_pairs(value: Any) -> List[Tuple[Any, Any]]:
    """Key/value pairs of a dictionary (archive order, keys unconverted)."""
    if _is(value, DICTIONARY_CLASSES):
        return list(zip(value.get("NS.keys", []), value.get("NS.objects", [])))
    raise CoercionError("dictionary", value)


def as_url_string(value: Any) -> str:
    """Absolute string form of an NSURL (or a plain string).

    A relative URL is joined onto its base the way NSURL's
    ``absoluteString`` does. A base chain that loops back on itself
    raises ``CoercionError``.
    """
    if isinstance(value, str) or _is(value, STRING_CLASSES):
        return as_string(value)
    if not _is(value, {URL_CLASS}):
        raise CoercionError("URL", value)

    # innermost relative part first, outermost base last
    parts: List[str] = []
    seen = set()
    node = value
    while node is not None:
        if node.index in seen:
            raise CoercionError("URL with an acyclic base chain", node)
        seen.add(node.index)
        parts.append(as_string(node.get("NS.relative")))
        node = node.get("NS.base")

    url = parts.pop()
    while parts:
        url = urljoin(url, parts.pop())
    return url


def as_uuid(value: Any) -> uuid.UUID:
    """UUID from an NSUUID or its string form; ValueError on a bad string."""
    if _is(value, {UUID_CLASS}):
        return uuid.UUID(bytes=value.get("NS.uuidbytes"))
    if isinstance(value, str) or _is(value, STRING_CLASSES):
        return uuid.UUID(as_string(value))
    raise CoercionError("UUID", value)

