"""Human-readable descriptions of the ItemRecord ``type`` and ``disposition`` bits.

The projector passes both integers through untouched; these helpers only
serve the verbose text rendering.
"""

from typing import List, Tuple

TYPE_FLAGS: Tuple[Tuple[int, str], ...] = (
    (0x1, "user item"),
    (0x2, "app"),
    (0x4, "login item"),
    (0x8, "agent"),
    (0x10, "daemon"),
    (0x20, "developer"),
    (0x40, "spotlight"),
    (0x800, "quicklook"),
    (0x10000, "legacy"),
    (0x80000, "curated"),
)

# (bit, label when set, label when clear)
DISPOSITION_FLAGS: Tuple[Tuple[int, str, str], ...] = (
    (0x1, "enabled", "disabled"),
    (0x2, "allowed", "disallowed"),
    (0x4, "hidden", "visible"),
    (0x8, "notified", "not notified"),
)


def describe_type(value: int) -> List[str]:
    """Names of the set type bits; unknown bits are listed in hex."""
    names = [label for bit, label in TYPE_FLAGS if value & bit]
    known = 0
    for bit, _ in TYPE_FLAGS:
        known |= bit
    leftover = value & ~known
    if leftover:
        names.append(f"unknown (0x{leftover:x})")
    return names


def describe_disposition(value: int) -> List[str]:
    """One label per disposition bit, e.g. ``["enabled", "allowed", ...]``."""
    return [on if value & bit else off for bit, on, off in DISPOSITION_FLAGS]
