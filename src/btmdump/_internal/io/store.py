"""Locate and read the on-disk background items store (internal)."""

import logging
import os
import re
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIRECTORY = Path("/private/var/db/com.apple.backgroundtaskmanagement")
STORE_DIR_ENV = "BTMDUMP_STORE_DIR"

_STORE_NAME = re.compile(r"^BackgroundItems-v(\d+)\.btm$")


class StoreNotFoundError(FileNotFoundError):
    """Raised when no store file can be located."""


def _directory_from_env(var_name: str, default: Path) -> Path:
    raw = os.getenv(var_name)
    if not raw:
        return default
    return Path(raw)


def store_directory() -> Path:
    """Directory searched for the default store (``BTMDUMP_STORE_DIR`` overrides)."""
    return _directory_from_env(STORE_DIR_ENV, DEFAULT_STORE_DIRECTORY)


def store_file_version(path: Union[str, Path]) -> Optional[int]:
    """``N`` from a ``BackgroundItems-vN.btm`` file name, else None."""
    match = _STORE_NAME.match(Path(path).name)
    return int(match.group(1)) if match else None


def find_store_path(directory: Optional[Union[str, Path]] = None) -> Path:
    """Return the store file with the highest version in ``directory``.

    Raises:
        StoreNotFoundError: if the directory is missing or holds no store file.
    """
    search_dir = Path(directory) if directory is not None else store_directory()
    if not search_dir.is_dir():
        raise StoreNotFoundError(f"Store directory not found: {search_dir}")

    candidates = [p for p in search_dir.iterdir() if store_file_version(p) is not None and p.is_file()]
    if not candidates:
        raise StoreNotFoundError(f"No BackgroundItems-v*.btm file in {search_dir}")

    best = max(candidates, key=store_file_version)
    logger.debug("Using store %s (%d candidate(s))", best, len(candidates))
    return best


def read_store(path: Union[str, Path]) -> bytes:
    """Read the raw bytes of one store file."""
    store_path = Path(path)
    return store_path.read_bytes()
