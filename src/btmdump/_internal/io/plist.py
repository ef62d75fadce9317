"""Property-list decoding (internal).

Byte-level binary plist parsing is delegated to the standard library; this
module only normalizes its failures into ``DecodeError``.
"""

import plistlib
from typing import Any
from xml.parsers.expat import ExpatError


class DecodeError(ValueError):
    """Raised when bytes are not a decodable property list."""


def decode_binary_tree(data: bytes) -> Any:
    """Decode property-list bytes into a generic tree.

    The tree is built from dict, list, str, bytes, int, float, bool,
    datetime and ``plistlib.UID`` values.
    """
    if not data:
        raise DecodeError("Empty input is not a property list")
    try:
        return plistlib.loads(data)
    except plistlib.InvalidFileException as e:
        raise DecodeError(f"Not a valid property list: {e}") from e
    except ExpatError as e:
        raise DecodeError(f"Malformed XML property list: {e}") from e
    except (ValueError, TypeError, OverflowError, IndexError, KeyError) as e:
        # plistlib surfaces corrupt offset tables and trailers as these
        raise DecodeError(f"Corrupt property list: {e}") from e
