"""Issue code constants for recoverable projection problems.

These constants prevent stringly-typed issue codes and ensure
client code matches on the codes the projector actually emits.
"""

from enum import Enum


class IssueCode(str, Enum):
    """Recoverable (per-field / per-shape) projection issue codes."""

    # Field-level (the offending field is omitted from the record)
    INVALID_URL = "INVALID_URL"
    INVALID_UUID = "INVALID_UUID"
    FIELD_TYPE_MISMATCH = "FIELD_TYPE_MISMATCH"

    # Storage-level
    AMBIGUOUS_SHAPE = "AMBIGUOUS_SHAPE"
    OWNER_KEY_COERCED = "OWNER_KEY_COERCED"
