"""btmdump: decode background task management stores into typed item records."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("btmdump")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from btmdump.api import decode_storage, dump, parse
from btmdump.codes import IssueCode
from btmdump.contracts import DumpResult, ProjectionIssue

__all__ = [
    "__version__",
    "decode_storage",
    "dump",
    "parse",
    "IssueCode",
    "DumpResult",
    "ProjectionIssue",
]
