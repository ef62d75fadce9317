"""Render a Storage graph as a structured mapping or as verbose text.

Both renderings walk the graph read-only. Optional fields that are absent
from a record are skipped, never rendered as null or empty. Byte payloads
are never decoded: the mapping carries their length and SHA-256 digest.
"""

import hashlib
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

from .flags import describe_disposition, describe_type
from .records import ItemBackReference, ItemRecord, Storage

# (mapping key, ItemRecord attribute), in rendering order
SCALAR_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("identifier", "identifier"),
    ("uuid", "uuid"),
    ("name", "name"),
    ("type", "type"),
    ("disposition", "disposition"),
    ("generation", "generation"),
    ("developerName", "developer_name"),
    ("teamIdentifier", "team_identifier"),
    ("bundleIdentifier", "bundle_identifier"),
    ("container", "container"),
    ("url", "url"),
    ("executablePath", "executable_path"),
)
BLOB_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("bookmark", "bookmark"),
    ("lightweightRequirement", "lightweight_requirement"),
)

INDENT = "  "

AccountLookup = Callable[[str], Optional[str]]


def blob(data: bytes) -> Dict[str, Any]:
    """Length-tagged opaque representation of a byte payload."""
    return {"length": len(data), "sha256": hashlib.sha256(data).hexdigest()}


def _blob_text(data: bytes) -> str:
    return f"<{len(data)} bytes sha256:{hashlib.sha256(data).hexdigest()[:16]}>"


# -- structured projection ---------------------------------------------------

def record_to_mapping(item: Union[ItemRecord, ItemBackReference]) -> Dict[str, Any]:
    """Mapping for one record, embedded records nested in place."""
    if isinstance(item, ItemBackReference):
        out: Dict[str, Any] = {"backReference": True}
        if item.identifier is not None:
            out["identifier"] = item.identifier
        return out

    out = {}
    for key, attr in SCALAR_FIELDS:
        value = getattr(item, attr)
        if value is not None:
            out[key] = value
    for key, attr in BLOB_FIELDS:
        value = getattr(item, attr)
        if value is not None:
            out[key] = blob(value)
    if item.associated_bundle_identifiers is not None:
        out["associatedBundleIdentifiers"] = list(item.associated_bundle_identifiers)
    if item.embedded_items:
        out["embeddedItems"] = [record_to_mapping(child) for child in item.embedded_items]
    if item.partial:
        out["partial"] = True
    return out


def to_mapping(storage: Storage, path: Optional[str] = None) -> Dict[str, Any]:
    """Structured projection of ``storage`` for machine consumption.

    Top-level keys: ``path`` (only when given), ``version``,
    ``itemsByOwner``, ``mdmPayloadsByIdentifier`` (only when non-empty) and
    ``error`` (only when the projection recorded issues).
    """
    out: Dict[str, Any] = {}
    if path is not None:
        out["path"] = path
    out["version"] = int(storage.version)
    out["itemsByOwner"] = {
        owner: {"items": [record_to_mapping(r) for r in storage.items_by_owner[owner]]}
        for owner in storage.owners()
    }
    if storage.mdm_payloads_by_identifier:
        out["mdmPayloadsByIdentifier"] = {
            key: blob(storage.mdm_payloads_by_identifier[key])
            for key in sorted(storage.mdm_payloads_by_identifier)
        }
    if storage.issues:
        out["error"] = [issue.to_mapping() for issue in storage.issues]
    return out


# -- verbose text ------------------------------------------------------------

class TextDump:
    """Lazy verbose rendering; every iteration re-walks the graph."""

    def __init__(self, storage: Storage, account_name: Optional[AccountLookup] = None):
        self.storage = storage
        self.account_name = account_name

    def __iter__(self) -> Iterator[str]:
        return self._walk()

    def __str__(self) -> str:
        return "\n".join(self)

    def _walk(self) -> Iterator[str]:
        storage = self.storage
        yield f"version: {int(storage.version)}"
        for owner in storage.owners():
            collection = storage.items_by_owner[owner]
            yield ""
            yield f"owner: {self._owner_label(owner)}"
            yield f"{INDENT}items: {len(collection)}"
            for position, record in enumerate(collection, start=1):
                yield from _record_lines(record, position, depth=1, parent=None)

        if storage.mdm_payloads_by_identifier:
            yield ""
            yield "mdmPayloadsByIdentifier:"
            for key in sorted(storage.mdm_payloads_by_identifier):
                yield f"{INDENT}{key}: {_blob_text(storage.mdm_payloads_by_identifier[key])}"

        if storage.issues:
            yield ""
            yield "error:"
            for issue in storage.issues:
                subject = issue.identifier or issue.owner or "storage"
                yield f"{INDENT}{subject}: {issue.code.value} ({issue.field}): {issue.message}"

    def _owner_label(self, owner: str) -> str:
        if self.account_name is None:
            return owner
        name = self.account_name(owner)
        return f"{owner} ({name})" if name else owner


def _record_lines(
    item: Union[ItemRecord, ItemBackReference],
    position: int,
    depth: int,
    parent: Optional[ItemRecord],
) -> Iterator[str]:
    pad = INDENT * depth
    field_pad = INDENT * (depth + 1)
    if isinstance(item, ItemBackReference):
        yield f"{pad}#{position}"
        yield f"{field_pad}backReference: {item.identifier}"
        return

    yield f"{pad}#{position}"
    for key, attr in SCALAR_FIELDS:
        value = getattr(item, attr)
        if value is None:
            continue
        yield f"{field_pad}{key}: {value}"
        if key == "type":
            yield f"{field_pad}typeFlags: {', '.join(describe_type(value)) or 'none'}"
        elif key == "disposition":
            yield f"{field_pad}dispositionFlags: {', '.join(describe_disposition(value))}"
    for key, attr in BLOB_FIELDS:
        value = getattr(item, attr)
        if value is not None:
            yield f"{field_pad}{key}: {_blob_text(value)}"
    if item.associated_bundle_identifiers is not None:
        yield f"{field_pad}associatedBundleIdentifiers: {', '.join(item.associated_bundle_identifiers)}"
    if parent is not None and parent.identifier is not None:
        yield f"{field_pad}parentIdentifier: {parent.identifier}"
    if item.partial:
        problems = ", ".join(f"{i.code.value}({i.field})" for i in item.issues)
        yield f"{field_pad}issues: {problems}"
    if item.embedded_items:
        yield f"{field_pad}embeddedItems:"
        for child_position, child in enumerate(item.embedded_items, start=1):
            yield from _record_lines(child, child_position, depth + 2, parent=item)


def to_text(storage: Storage, account_name: Optional[AccountLookup] = None) -> TextDump:
    """Verbose, human-readable dump of ``storage`` (an iterable of lines)."""
    return TextDump(storage, account_name=account_name)

