"""Pytest configuration and shared keyed-archive builders.

No sys.path hacks - tests should import from installed btmdump package.
"""

import os
import plistlib
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


def pytest_addoption(parser):
    """Add gated perf test option."""
    parser.addoption(
        "--run-perf",
        action="store_true",
        default=False,
        help="Run performance sentinel benchmarks (gated)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip perf-marked tests unless --run-perf is set."""
    if config.getoption("--run-perf"):
        return
    skip_perf = pytest.mark.skip(reason="perf tests gated; pass --run-perf")
    for item in items:
        if "perf" in item.keywords:
            item.add_marker(skip_perf)


def pytest_sessionfinish(session, exitstatus):
    """Best-effort cleanup for basetemp on Windows without patching pytest internals."""
    if os.name != "nt":
        return
    basetemp = getattr(session.config.option, "basetemp", None)
    if not basetemp:
        return
    basetemp_path = Path(basetemp)
    if not basetemp_path.exists():
        return
    try:
        import shutil
        shutil.rmtree(basetemp_path)
    except (PermissionError, OSError):
        # If cleanup fails, let it surface as a warning rather than masking errors.
        import warnings
        warnings.warn(f"Could not remove basetemp: {basetemp_path}")


class ArchiveBuilder:
    """Builds an NSKeyedArchiver-style tree (``$objects`` + ``$top``) in memory.

    Index 0 is the conventional ``$null`` entry. Every ``add_*`` method
    returns the ``plistlib.UID`` of the new entry.
    """

    def __init__(self):
        self.objects: List[Any] = ["$null"]
        self._class_refs: Dict[str, plistlib.UID] = {}

    def _append(self, entry: Any) -> plistlib.UID:
        self.objects.append(entry)
        return plistlib.UID(len(self.objects) - 1)

    def reserve(self) -> plistlib.UID:
        """Reserve a slot to be filled later (for forward references / cycles)."""
        return self._append(None)

    def fill(self, ref: plistlib.UID, entry: Any) -> plistlib.UID:
        self.objects[ref.data] = entry
        return ref

    def class_ref(self, name: str, chain: Optional[List[str]] = None) -> plistlib.UID:
        if name not in self._class_refs:
            self._class_refs[name] = self._append({
                "$classname": name,
                "$classes": chain or [name, "NSObject"],
            })
        return self._class_refs[name]

    def obj(self, class_name: str, **fields: Any) -> Dict[str, Any]:
        entry = {"$class": self.class_ref(class_name)}
        entry.update(fields)
        return entry

    def add_obj(self, class_name: str, **fields: Any) -> plistlib.UID:
        return self._append(self.obj(class_name, **fields))

    def add_string(self, text: str) -> plistlib.UID:
        return self._append(text)

    def add_data(self, data: bytes) -> plistlib.UID:
        return self._append(data)

    def add_set(self, refs: List[Any]) -> plistlib.UID:
        return self.add_obj("NSSet", **{"NS.objects": list(refs)})

    def add_array(self, refs: List[Any]) -> plistlib.UID:
        return self.add_obj("NSArray", **{"NS.objects": list(refs)})

    def add_dict(self, pairs: Dict[Any, Any]) -> plistlib.UID:
        keys = [self.add_string(k) if isinstance(k, str) else k for k in pairs]
        return self.add_obj("NSDictionary", **{"NS.keys": keys, "NS.objects": list(pairs.values())})

    def add_url(self, text: str, base: Optional[plistlib.UID] = None) -> plistlib.UID:
        return self.add_obj(
            "NSURL",
            **{"NS.base": base or plistlib.UID(0), "NS.relative": self.add_string(text)}
        )

    def add_uuid(self, raw: bytes) -> plistlib.UID:
        return self.add_obj("NSUUID", **{"NS.uuidbytes": raw})

    def item_fields(self, embedded: Optional[List[plistlib.UID]] = None, **fields: Any) -> Dict[str, Any]:
        """ItemRecord entry; string values are interned as table strings."""
        entry = self.obj("ItemRecord")
        for key, value in fields.items():
            entry[key] = self.add_string(value) if isinstance(value, str) else value
        if embedded is not None:
            entry["embeddedItems"] = self.add_set(embedded)
        return entry

    def add_item(self, embedded: Optional[List[plistlib.UID]] = None, **fields: Any) -> plistlib.UID:
        return self._append(self.item_fields(embedded=embedded, **fields))

    def tree(self, root: plistlib.UID) -> Dict[str, Any]:
        return {
            "$archiver": "NSKeyedArchiver",
            "$version": 100000,
            "$objects": self.objects,
            "$top": {"root": root},
        }

    def to_bytes(self, root: plistlib.UID) -> bytes:
        return plistlib.dumps(self.tree(root), fmt=plistlib.FMT_BINARY)


def text_fields(lines: List[str], identifier: str) -> Dict[str, str]:
    """Collect the ``name: value`` lines of the first text block for ``identifier``."""
    fields: Dict[str, str] = {}
    block_indent: Optional[int] = None
    for line in lines:
        stripped = line.lstrip(" ")
        indent = len(line) - len(stripped)
        if block_indent is None:
            if stripped == f"identifier: {identifier}":
                block_indent = indent
                fields["identifier"] = identifier
            continue
        if indent < block_indent:
            break
        if indent > block_indent:
            continue
        name, sep, value = stripped.partition(": ")
        if sep:
            fields[name] = value
    return fields


@pytest.fixture
def builder():
    return ArchiveBuilder()


@pytest.fixture
def example_v2_tree():
    """Two-entry store: Storage{items: {ref 1}} with one ItemRecord."""
    b = ArchiveBuilder()
    storage = b.reserve()
    item = b.add_item(
        embedded=[],
        identifier="com.example.agent",
        bundleIdentifier="com.example.app",
    )
    b.fill(storage, b.obj("Storage", items=b.add_set([item])))
    return b.tree(storage)


@pytest.fixture
def v1_tree():
    """Per-user store with two owners, MDM payloads and a fully populated record."""
    b = ArchiveBuilder()
    storage = b.reserve()
    helper = b.add_item(
        identifier="com.example.helper",
        name="Helper",
        type=0x8,
        disposition=0xB,
        generation=2,
        executablePath="/Library/Helpers/helper",
        url=b.add_url("file:///Library/Helpers/helper"),
    )
    app = b.add_item(
        embedded=[helper],
        identifier="com.example.app",
        name="Example",
        type=0x2,
        disposition=0x3,
        generation=1,
        developerName="Example Corp",
        teamIdentifier="ABCDE12345",
        bundleIdentifier="com.example.app",
        container="",
        url=b.add_url("file:///Applications/Example.app/"),
        uuid=b.add_uuid(bytes(range(16))),
        bookmark=b.add_data(b"book\x00mark"),
        lightweightRequirement=b.add_data(b"\xfa\xde\x0c\x00"),
        associatedBundleIdentifiers=b.add_array([b.add_string("com.example.other")]),
    )
    daemon = b.add_item(embedded=[], identifier="com.example.daemon", type=0x10)
    owners = b.add_dict({
        "501": b.add_array([app]),
        "*": b.add_array([daemon]),
    })
    mdm = b.add_dict({"com.example.profile": b.add_data(b"\x01\x02\x03")})
    b.fill(storage, b.obj("Storage", itemsByUserIdentifier=owners, mdmPayloadsByIdentifier=mdm))
    return b.tree(storage)
