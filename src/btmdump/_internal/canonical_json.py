"""Centralized canonical JSON serialization.

This module provides a single function for byte-stable JSON serialization
of structured store projections, so two dumps of the same store compare equal
byte for byte.
"""

import json
from typing import Any, Optional


def canonical_dumps(obj: Any, indent: Optional[int] = None) -> str:
    """
    Canonical JSON serialization.

    Rules:
    - UTF-8 encoding
    - Sorted keys
    - Stable separators (",", ":") when not indented
    - List ordering is preserved (records are already ordered before calling)

    Args:
        obj: Python object to serialize
        indent: Optional indent for human-facing output

    Returns:
        Canonical JSON string (UTF-8 encoded)
    """
    return json.dumps(
        obj,
        sort_keys=True,
        indent=indent,
        separators=(",", ":") if indent is None else (",", ": "),
        ensure_ascii=False  # UTF-8 encoding
    )
