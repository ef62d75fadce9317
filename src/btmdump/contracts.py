"""Public result models for the btmdump package."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from btmdump.codes import IssueCode


class ProjectionIssue(BaseModel):
    """A recoverable problem found while projecting one record or storage field."""
    code: IssueCode
    message: str
    identifier: Optional[str] = None  # record identifier, None for storage-level issues
    owner: Optional[str] = None  # owner-key the record was reached from (if known)
    field: Optional[str] = None  # archived field name, e.g. "url"

    model_config = ConfigDict(frozen=True)

    def to_mapping(self) -> Dict[str, Any]:
        """Render as a plain dict, omitting unset optional keys."""
        return self.model_dump(mode="json", exclude_none=True)


class DumpResult(BaseModel):
    """Outcome of a full decode of one store file."""
    path: Optional[str] = None
    version: int
    record_count: int
    owners: List[str]  # sorted owner-keys
    issues: List[ProjectionIssue]

    @property
    def partial(self) -> bool:
        return bool(self.issues)
