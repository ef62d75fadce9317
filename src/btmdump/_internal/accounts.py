"""Owner-key to account-name lookup (internal, presentation only)."""

from typing import Optional

try:
    import pwd
except ImportError:  # not available on Windows
    pwd = None

from btmdump.kernel.records import SYSTEM_OWNER


def lookup_account_name(owner_key: str) -> Optional[str]:
    """Account name for a numeric owner-key, or None when it cannot be resolved."""
    if owner_key == SYSTEM_OWNER or not owner_key.isdigit() or pwd is None:
        return None
    try:
        return pwd.getpwuid(int(owner_key)).pw_name
    except (KeyError, OverflowError):
        return None
