"""Typed domain records projected from a background items store.

Records are frozen and compare by identity: two projections of the same
archived object are the *same* instance, which is how shared embedded items
stay shared. Ownership cycles never appear here; the projector replaces the
closing edge of a cycle with an ``ItemBackReference``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from btmdump.contracts import ProjectionIssue

# Owner-key for system-wide items and for the single flat v2 collection.
SYSTEM_OWNER = "*"


class SchemaVersion(IntEnum):
    """On-disk shape of the store.

    V1 partitions items per user (``itemsByUserIdentifier``) and may carry
    MDM payloads; V2 stores one flat ``items`` collection.
    """
    V1 = 1
    V2 = 2


@dataclass(frozen=True, eq=False)
class ItemBackReference:
    """Non-owning edge to a record that is already an ancestor (cycle closer)."""
    index: int
    identifier: Optional[str]


@dataclass(frozen=True, eq=False)
class ItemRecord:
    """One background item (login item, agent, daemon, app, ...)."""
    index: int  # object-table index of the archived record
    type: Optional[int] = None
    generation: Optional[int] = None
    disposition: Optional[int] = None
    url: Optional[str] = None
    uuid: Optional[str] = None
    name: Optional[str] = None
    container: Optional[str] = None
    identifier: Optional[str] = None
    developer_name: Optional[str] = None
    executable_path: Optional[str] = None
    team_identifier: Optional[str] = None
    bundle_identifier: Optional[str] = None
    bookmark: Optional[bytes] = field(default=None, repr=False)
    lightweight_requirement: Optional[bytes] = field(default=None, repr=False)
    associated_bundle_identifiers: Optional[Tuple[str, ...]] = None
    embedded_items: Tuple[Union["ItemRecord", ItemBackReference], ...] = field(default=(), repr=False)
    issues: Tuple[ProjectionIssue, ...] = field(default=(), repr=False)

    @property
    def partial(self) -> bool:
        """True when at least one field was dropped during projection."""
        return bool(self.issues)

    def owned_items(self) -> Tuple["ItemRecord", ...]:
        """Embedded records this record owns (back-references excluded)."""
        return tuple(item for item in self.embedded_items if isinstance(item, ItemRecord))

    def back_references(self) -> Tuple[ItemBackReference, ...]:
        return tuple(item for item in self.embedded_items if isinstance(item, ItemBackReference))


def record_sort_key(item: Union[ItemRecord, ItemBackReference]) -> Tuple[bool, str, int]:
    """Stable display order: identified records by identifier, then the rest."""
    return (item.identifier is None, item.identifier or "", item.index)


class ItemCollection:
    """Set of records for one owner, looked up by record identifier.

    Membership is by identity; archive order carries no meaning, so
    iteration yields records in ``record_sort_key`` order.
    """

    def __init__(self, records=()):
        self._records: List[ItemRecord] = []
        self._members: Set[int] = set()
        for record in records:
            self.add(record)

    def add(self, record: ItemRecord) -> None:
        """Add ``record`` unless this exact instance is already a member."""
        if id(record) in self._members:
            return
        self._members.add(id(record))
        self._records.append(record)

    def get(self, identifier: str) -> Optional[ItemRecord]:
        """First record (in display order) carrying ``identifier``."""
        for record in self:
            if record.identifier == identifier:
                return record
        return None

    def identifiers(self) -> List[str]:
        return [r.identifier for r in self if r.identifier is not None]

    def __iter__(self) -> Iterator[ItemRecord]:
        return iter(sorted(self._records, key=record_sort_key))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return any(r.identifier == item for r in self._records)
        return id(item) in self._members

    def __repr__(self) -> str:
        return f"ItemCollection({self.identifiers()!r})"


def owner_sort_key(owner: str) -> Tuple[int, int, str]:
    """Sentinel first, then numeric owner-keys numerically, then the rest."""
    if owner == SYSTEM_OWNER:
        return (0, 0, owner)
    if owner.isdigit():
        return (1, int(owner), owner)
    return (2, 0, owner)


@dataclass(frozen=True, eq=False)
class Storage:
    """Root of one decoded store."""
    version: SchemaVersion
    items_by_owner: Dict[str, ItemCollection]
    mdm_payloads_by_identifier: Dict[str, bytes] = field(default_factory=dict, repr=False)
    issues: Tuple[ProjectionIssue, ...] = ()
    # object-table index -> projected record, for every record in the graph
    arena: Dict[int, ItemRecord] = field(default_factory=dict, repr=False)

    def owners(self) -> List[str]:
        return sorted(self.items_by_owner, key=owner_sort_key)

    def iter_records(self) -> Iterator[ItemRecord]:
        """Every distinct record reachable from the storage, each once."""
        return iter(sorted(self.arena.values(), key=lambda r: r.index))

    @property
    def record_count(self) -> int:
        return len(self.arena)

    @property
    def partial(self) -> bool:
        return bool(self.issues)

    def find(self, identifier: str) -> List[ItemRecord]:
        """All distinct records with ``identifier`` (any owner, any depth)."""
        return [r for r in self.iter_records() if r.identifier == identifier]
