"""Public API for btmdump.

High-level functions that run the whole pipeline:
bytes -> property-list tree -> resolved archive -> typed Storage -> rendering.
Callers should use these functions instead of importing from _internal.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, TextIO, Tuple, Union

from btmdump._internal.accounts import lookup_account_name
from btmdump._internal.io.plist import DecodeError, decode_binary_tree
from btmdump._internal.io.store import find_store_path, read_store
from btmdump.contracts import DumpResult
from btmdump.kernel.archive import ArchiveFormatError, EmbeddingTooDeepError, resolve
from btmdump.kernel.format import to_mapping, to_text
from btmdump.kernel.records import Storage
from btmdump.kernel.schema import SchemaError, project

logger = logging.getLogger(__name__)

# Every failure that aborts a decode (recoverable issues never raise)
FATAL_ERRORS = (DecodeError, ArchiveFormatError, SchemaError, OSError)


def _normalize_path(path: Union[str, os.PathLike, Path, None]) -> Path:
    """Normalize path input to Path object, defaulting to the located store."""
    if path is None:
        return find_store_path()
    return Path(path) if not isinstance(path, Path) else path


def decode_storage(
    source: Union[bytes, Mapping[str, Any]],
    extra_classes: Iterable[str] = (),
) -> Storage:
    """Decode one store into a typed ``Storage``.

    Args:
        source: raw store bytes, or an already-decoded property-list tree
        extra_classes: archived class names to accept besides the known ones

    Raises:
        DecodeError: bytes are not a property list
        ArchiveFormatError: the keyed archive is inconsistent
        SchemaError: the archive does not match a known store schema
        EmbeddingTooDeepError: objects nest deeper than the interpreter stack allows
    """
    tree = decode_binary_tree(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        root = resolve(tree, extra_classes=extra_classes)
        storage = project(root)
    except RecursionError as e:
        raise EmbeddingTooDeepError(
            f"Archived objects nest too deeply to decode (limit {sys.getrecursionlimit()} frames)"
        ) from e
    logger.debug(
        "Decoded store: version %d, %d owner(s), %d record(s), %d issue(s)",
        storage.version,
        len(storage.items_by_owner),
        storage.record_count,
        len(storage.issues),
    )
    return storage


def load_storage(path: Union[str, os.PathLike, Path, None] = None) -> Tuple[Path, Storage]:
    """Read and decode the store at ``path`` (default: the located store)."""
    store_path = _normalize_path(path)
    logger.debug("Reading store %s", store_path)
    return store_path, decode_storage(read_store(store_path))


def parse(path: Union[str, os.PathLike, Path, None] = None) -> Dict[str, Any]:
    """Structured projection of the store at ``path``, with ``path`` filled in."""
    store_path, storage = load_storage(path)
    return to_mapping(storage, path=str(store_path))


def summarize(storage: Storage, path: Optional[Union[str, Path]] = None) -> DumpResult:
    """Condensed result (counts and issues) for status reporting."""
    return DumpResult(
        path=str(path) if path is not None else None,
        version=int(storage.version),
        record_count=storage.record_count,
        owners=storage.owners(),
        issues=list(storage.issues),
    )


def dump(
    path: Union[str, os.PathLike, Path, None] = None,
    stream: Optional[TextIO] = None,
) -> int:
    """Write the verbose text dump of the store at ``path`` to ``stream``.

    Returns:
        0 on success (possibly with recoverable issues listed), 1 on a fatal error.
    """
    out = stream if stream is not None else sys.stdout
    try:
        store_path, storage = load_storage(path)
    except FATAL_ERRORS as e:
        logger.error("Failed to decode store: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    out.write(f"path: {store_path}\n")
    for line in to_text(storage, account_name=lookup_account_name):
        out.write(line + "\n")
    return 0
