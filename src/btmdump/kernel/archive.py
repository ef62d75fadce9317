"""Resolve a keyed-archive property tree into a graph of GenericObject nodes.

A keyed archive is a flat table (``$objects``) of archived objects plus a
root back-reference (``$top.root``). Objects refer to each other with
``plistlib.UID`` indexes into the table, so the archive can express sharing
and cycles. Resolution walks the table from the root, memoizing by index:
a node is cached *before* its fields are resolved, so a reference back to a
node under construction returns the same (still filling) node instead of
recursing again. Every index is therefore visited at most once, which bounds
recursion depth by the table size.
"""

from __future__ import annotations

import logging
import plistlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)

ARCHIVER_KEY = "$archiver"
VERSION_KEY = "$version"
OBJECTS_KEY = "$objects"
TOP_KEY = "$top"
ROOT_KEY = "root"
CLASS_KEY = "$class"
CLASSNAME_KEY = "$classname"
CLASSES_KEY = "$classes"
NULL_MARKER = "$null"

EXPECTED_ARCHIVER = "NSKeyedArchiver"

STORAGE_CLASS = "Storage"
ITEM_RECORD_CLASS = "ItemRecord"
SCHEMA_CLASSES: FrozenSet[str] = frozenset({STORAGE_CLASS, ITEM_RECORD_CLASS})

STRING_CLASSES = frozenset({"NSString", "NSMutableString"})
DATA_CLASSES = frozenset({"NSData", "NSMutableData"})
ARRAY_CLASSES = frozenset({"NSArray", "NSMutableArray"})
SET_CLASSES = frozenset({"NSSet", "NSMutableSet", "NSOrderedSet", "NSMutableOrderedSet"})
DICTIONARY_CLASSES = frozenset({"NSDictionary", "NSMutableDictionary"})
URL_CLASS = "NSURL"
UUID_CLASS = "NSUUID"
DATE_CLASS = "NSDate"

FOUNDATION_CLASSES: FrozenSet[str] = (
    STRING_CLASSES | DATA_CLASSES | ARRAY_CLASSES | SET_CLASSES | DICTIONARY_CLASSES
    | frozenset({URL_CLASS, UUID_CLASS, DATE_CLASS})
)

KNOWN_CLASSES: FrozenSet[str] = SCHEMA_CLASSES | FOUNDATION_CLASSES

_SCALAR_TYPES = (str, bytes, int, float, bool, datetime)


class ArchiveFormatError(ValueError):
    """Base exception: the archive envelope is present but inconsistent."""
    code = "ARCHIVE_FORMAT"


class MissingEnvelopeError(ArchiveFormatError):
    """Raised when a conventional top-level key is absent."""
    code = "MISSING_ENVELOPE"

    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(f"Keyed archive envelope is missing: {', '.join(self.missing)}")


class DanglingReferenceError(ArchiveFormatError):
    """Raised when a back-reference points outside the object table."""
    code = "DANGLING_REFERENCE"

    def __init__(self, index: int, table_size: int):
        self.index = index
        self.table_size = table_size
        super().__init__(
            f"Back-reference {index} is outside the object table (size {table_size})"
        )


class UnknownClassError(ArchiveFormatError):
    """Raised when an archived class name is not a recognized class."""
    code = "UNKNOWN_CLASS"

    def __init__(self, class_name: str, index: Optional[int] = None):
        self.class_name = class_name
        self.index = index
        where = f" (object {index})" if index is not None else ""
        super().__init__(f"Unknown archived class '{class_name}'{where}")


class TypeMismatchError(ArchiveFormatError):
    """Raised when a value does not have the shape the convention requires."""
    code = "TYPE_MISMATCH"


class EmbeddingTooDeepError(ArchiveFormatError):
    """Raised when object nesting exceeds what the decoder can walk."""
    code = "EMBEDDING_TOO_DEEP"


@dataclass(eq=False)
class GenericObject:
    """One resolved, class-tagged entry of the object table.

    Identity is the original table index. Nodes compare and hash by identity,
    so they can sit in sets even while cyclic.
    """
    index: int
    class_name: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)
    class_chain: Tuple[str, ...] = ()  # $classes, most-derived first
    complete: bool = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self.fields

    def __repr__(self) -> str:
        return f"GenericObject(index={self.index}, class_name={self.class_name!r})"


def resolve(tree: Mapping[str, Any], extra_classes: Iterable[str] = ()) -> GenericObject:
    """Resolve a decoded keyed archive and return its root object.

    Raises:
        ArchiveFormatError: (or a subclass) for any envelope inconsistency.
    """
    return ArchiveResolver(tree, extra_classes=extra_classes).resolve_root()


class ArchiveResolver:
    """Single-use resolver over one archive's object table.

    All memoization state lives on the instance; create one per archive.
    """

    def __init__(self, tree: Mapping[str, Any], extra_classes: Iterable[str] = ()):
        if not isinstance(tree, Mapping):
            raise MissingEnvelopeError([ARCHIVER_KEY, VERSION_KEY, OBJECTS_KEY, TOP_KEY])

        missing = [k for k in (ARCHIVER_KEY, VERSION_KEY, OBJECTS_KEY, TOP_KEY) if k not in tree]
        top = tree.get(TOP_KEY)
        if isinstance(top, Mapping) and ROOT_KEY not in top:
            missing.append(f"{TOP_KEY}.{ROOT_KEY}")
        if missing:
            raise MissingEnvelopeError(missing)

        archiver = tree[ARCHIVER_KEY]
        if not isinstance(archiver, str):
            raise TypeMismatchError(f"{ARCHIVER_KEY} must be a string, got {type(archiver).__name__}")
        if archiver != EXPECTED_ARCHIVER:
            logger.warning("Unexpected archiver name %r (expected %r)", archiver, EXPECTED_ARCHIVER)

        objects = tree[OBJECTS_KEY]
        if not isinstance(objects, list):
            raise TypeMismatchError(f"{OBJECTS_KEY} must be an array, got {type(objects).__name__}")
        if not isinstance(top, Mapping):
            raise TypeMismatchError(f"{TOP_KEY} must be a dictionary, got {type(top).__name__}")

        self.version = tree[VERSION_KEY]
        self.objects: List[Any] = objects
        self.root_ref = top[ROOT_KEY]
        self.known_classes: FrozenSet[str] = KNOWN_CLASSES | frozenset(extra_classes)

        self._memo: Dict[int, Any] = {}
        self._in_progress: Set[int] = set()
        self._class_memo: Dict[int, Tuple[Optional[str], Tuple[str, ...]]] = {}

    def resolve_root(self) -> GenericObject:
        """Resolve the root reference; the root must be a class-tagged object."""
        logger.debug("Resolving keyed archive: %d objects", len(self.objects))
        root = self._resolve_ref(self.root_ref, "$top.root")
        if not isinstance(root, GenericObject):
            raise TypeMismatchError(
                f"Archive root must be an archived object, got {type(root).__name__}"
            )
        return root

    def _index_of(self, ref: Any, where: str) -> int:
        if not isinstance(ref, plistlib.UID):
            raise TypeMismatchError(f"{where}: expected a back-reference, got {type(ref).__name__}")
        index = ref.data
        if not isinstance(index, int) or index < 0 or index >= len(self.objects):
            raise DanglingReferenceError(index, len(self.objects))
        return index

    def _resolve_ref(self, ref: Any, where: str) -> Any:
        index = self._index_of(ref, where)
        if index in self._memo:
            if index in self._in_progress:
                logger.debug("Object %d referenced while in progress (cycle)", index)
            return self._memo[index]

        entry = self.objects[index]
        if isinstance(entry, str) and entry == NULL_MARKER:
            self._memo[index] = None
            return None
        if isinstance(entry, _SCALAR_TYPES):
            self._memo[index] = entry
            return entry
        if not isinstance(entry, Mapping):
            raise TypeMismatchError(
                f"Object {index}: table entries must be scalars or dictionaries, "
                f"got {type(entry).__name__}"
            )

        class_name, chain = self._resolve_class(entry, index)
        node = GenericObject(index=index, class_name=class_name, class_chain=chain)
        self._memo[index] = node
        self._in_progress.add(index)

        for key, raw in entry.items():
            if key == CLASS_KEY:
                continue
            if not isinstance(key, str):
                raise TypeMismatchError(f"Object {index}: field names must be strings, got {key!r}")
            node.fields[key] = self._resolve_value(raw, f"object {index} field '{key}'")

        _check_shape(node)
        self._in_progress.discard(index)
        node.complete = True
        return node

    def _resolve_value(self, raw: Any, where: str) -> Any:
        if isinstance(raw, plistlib.UID):
            return self._resolve_ref(raw, where)
        if isinstance(raw, list):
            return [self._resolve_value(item, where) for item in raw]
        if isinstance(raw, _SCALAR_TYPES):
            return raw
        raise TypeMismatchError(f"{where}: unsupported inline value of type {type(raw).__name__}")

    def _resolve_class(self, entry: Mapping[str, Any], index: int) -> Tuple[Optional[str], Tuple[str, ...]]:
        """Resolve the ``$class`` tag of a table entry.

        An entry without ``$class`` carries a null tag. When ``$classname``
        is not recognized, the first recognized name in ``$classes`` (the
        superclass chain) is used instead.
        """
        ref = entry.get(CLASS_KEY)
        if ref is None:
            return None, ()

        class_index = self._index_of(ref, f"object {index} {CLASS_KEY}")
        if class_index in self._class_memo:
            return self._class_memo[class_index]

        definition = self.objects[class_index]
        if not isinstance(definition, Mapping):
            raise TypeMismatchError(f"Object {index}: {CLASS_KEY} must reference a class definition")
        name = definition.get(CLASSNAME_KEY)
        if not isinstance(name, str):
            raise TypeMismatchError(f"Class definition {class_index}: {CLASSNAME_KEY} must be a string")
        chain_raw = definition.get(CLASSES_KEY, [name])
        if not isinstance(chain_raw, list) or not all(isinstance(c, str) for c in chain_raw):
            raise TypeMismatchError(f"Class definition {class_index}: {CLASSES_KEY} must be an array of strings")
        chain = tuple(chain_raw)

        if name in self.known_classes:
            resolved = (name, chain)
        else:
            fallback = next((c for c in chain if c in self.known_classes), None)
            if fallback is None:
                raise UnknownClassError(name, index)
            logger.debug("Object %d: class %r resolved as %r", index, name, fallback)
            resolved = (fallback, chain)

        self._class_memo[class_index] = resolved
        return resolved


def _is_string(value: Any) -> bool:
    return isinstance(value, str) or (
        isinstance(value, GenericObject) and value.class_name in STRING_CLASSES
    )


def _check_shape(node: GenericObject) -> None:
    """Validate the fields a Foundation class is required to carry.

    Schema classes and untagged objects are not checked here; the
    projector validates their fields one by one.
    """
    name = node.class_name
    where = f"Object {node.index} ({name})"
    if name in STRING_CLASSES:
        if not isinstance(node.get("NS.string"), str):
            raise TypeMismatchError(f"{where}: NS.string must be a string")
    elif name in DATA_CLASSES:
        if not isinstance(node.get("NS.data"), bytes):
            raise TypeMismatchError(f"{where}: NS.data must be data")
    elif name in ARRAY_CLASSES or name in SET_CLASSES:
        if not isinstance(node.get("NS.objects", []), list):
            raise TypeMismatchError(f"{where}: NS.objects must be an array")
    elif name in DICTIONARY_CLASSES:
        keys = node.get("NS.keys", [])
        values = node.get("NS.objects", [])
        if not isinstance(keys, list) or not isinstance(values, list):
            raise TypeMismatchError(f"{where}: NS.keys and NS.objects must be arrays")
        if len(keys) != len(values):
            raise TypeMismatchError(
                f"{where}: {len(keys)} keys but {len(values)} values"
            )
    elif name == URL_CLASS:
        relative = node.get("NS.relative")
        base = node.get("NS.base")
        if not _is_string(relative):
            raise TypeMismatchError(f"{where}: NS.relative must be a string")
        if base is not None and not (isinstance(base, GenericObject) and base.class_name == URL_CLASS):
            raise TypeMismatchError(f"{where}: NS.base must be null or a URL")
    elif name == UUID_CLASS:
        raw = node.get("NS.uuidbytes")
        if not isinstance(raw, bytes) or len(raw) != 16:
            raise TypeMismatchError(f"{where}: NS.uuidbytes must be 16 bytes of data")
    elif name == DATE_CLASS:
        stamp = node.get("NS.time")
        if isinstance(stamp, bool) or not isinstance(stamp, (int, float)):
            raise TypeMismatchError(f"{where}: NS.time must be a number")
