"""Project resolved archive objects into typed Storage / ItemRecord records.

Two on-disk shapes are supported (see ``SchemaVersion``). The version is
decided once, from the root object's field set, and the rest of the
projection is shared.

Records are memoized by object-table index, so an archived record reached
from several parents is projected once and shared. A record reached again
while it is still being projected (an ownership cycle) is replaced by an
``ItemBackReference`` carrying only its identifier.

Field-level problems (bad URL, bad UUID, wrong value kind) do not abort the
projection: the field is dropped and a ``ProjectionIssue`` is recorded on the
record and on the storage.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pydantic import AnyUrl, TypeAdapter, ValidationError

from btmdump.codes import IssueCode
from btmdump.contracts import ProjectionIssue

from .archive import ITEM_RECORD_CLASS, STORAGE_CLASS, GenericObject
from .foundation import (
    CoercionError,
    as_data,
    as_elements,
    as_integer,
    as_pairs,
    as_string,
    as_url_string,
    as_uuid,
    describe,
    is_collection,
    is_dictionary,
)
from .records import (
    SYSTEM_OWNER,
    ItemBackReference,
    ItemCollection,
    ItemRecord,
    SchemaVersion,
    Storage,
    record_sort_key,
)

logger = logging.getLogger(__name__)

ITEMS_BY_USER_KEY = "itemsByUserIdentifier"
MDM_PAYLOADS_KEY = "mdmPayloadsByIdentifier"
ITEMS_KEY = "items"

URL_FIELD = "url"
UUID_FIELD = "uuid"
IDENTIFIER_FIELD = "identifier"
ASSOCIATED_FIELD = "associatedBundleIdentifiers"
EMBEDDED_FIELD = "embeddedItems"

# (archived field name, ItemRecord attribute)
STRING_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("name", "name"),
    ("container", "container"),
    ("identifier", "identifier"),
    ("developerName", "developer_name"),
    ("executablePath", "executable_path"),
    ("teamIdentifier", "team_identifier"),
    ("bundleIdentifier", "bundle_identifier"),
)
INTEGER_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("type", "type"),
    ("generation", "generation"),
    ("disposition", "disposition"),
)
DATA_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("bookmark", "bookmark"),
    ("lightweightRequirement", "lightweight_requirement"),
)

KNOWN_RECORD_FIELDS = frozenset(
    [k for k, _ in STRING_FIELDS + INTEGER_FIELDS + DATA_FIELDS]
    + [URL_FIELD, UUID_FIELD, ASSOCIATED_FIELD, EMBEDDED_FIELD]
)

_URL_ADAPTER = TypeAdapter(AnyUrl)


class SchemaError(ValueError):
    """Base exception: the archive does not match a known domain schema."""
    code = "SCHEMA"


class UnrecognizedShapeError(SchemaError):
    """Raised when the storage (or one of its containers) has an unknown shape."""
    code = "UNRECOGNIZED_SHAPE"


class UnexpectedClassError(SchemaError):
    """Raised when an object has a different class than the schema requires."""
    code = "UNEXPECTED_CLASS"

    def __init__(self, expected: str, found: Any, index: Optional[int] = None):
        self.expected = expected
        self.found = describe(found)
        self.index = index
        where = f"object {index}" if index is not None else "value"
        super().__init__(f"Expected {expected} at {where}, found {self.found}")


class InvalidURLError(SchemaError):
    """Raised for a URL field that does not parse. Recovered inside the projector."""
    code = "INVALID_URL"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid URL {value!r}: {reason}")


def parse_url(text: str) -> str:
    """Validate ``text`` as an absolute URL and return it unchanged."""
    try:
        _URL_ADAPTER.validate_python(text)
    except ValidationError as e:
        reason = e.errors()[0]["msg"] if e.errors() else str(e)
        raise InvalidURLError(text, reason) from e
    return text


def detect_version(root: GenericObject) -> Tuple[SchemaVersion, bool]:
    """Return ``(version, ambiguous)`` from the root object's field set.

    ``ambiguous`` is True when both shapes' collections are present; v1
    wins in that case.
    """
    has_v1 = root.get(ITEMS_BY_USER_KEY) is not None
    has_v2 = root.get(ITEMS_KEY) is not None
    if has_v1:
        return SchemaVersion.V1, has_v2
    if has_v2:
        return SchemaVersion.V2, False
    present = ", ".join(sorted(root.fields)) or "none"
    raise UnrecognizedShapeError(
        f"Storage has neither '{ITEMS_BY_USER_KEY}' nor '{ITEMS_KEY}' (fields: {present})"
    )


def project(root: GenericObject) -> Storage:
    """Project a resolved archive root into a ``Storage``."""
    return SchemaProjector().project(root)


def _expect_class(obj: Any, expected: str) -> GenericObject:
    if not isinstance(obj, GenericObject) or obj.class_name != expected:
        raise UnexpectedClassError(expected, obj, getattr(obj, "index", None))
    return obj


class SchemaProjector:
    """Single-use projector; memoization state is local to one projection."""

    def __init__(self):
        self._records: Dict[int, ItemRecord] = {}
        self._in_progress: Set[int] = set()
        self._issues: List[ProjectionIssue] = []

    def project(self, root: GenericObject) -> Storage:
        _expect_class(root, STORAGE_CLASS)
        version, ambiguous = detect_version(root)
        logger.debug("Detected schema version %d", version)

        mdm_payloads: Dict[str, bytes] = {}
        if version is SchemaVersion.V1:
            if ambiguous:
                self._issue(
                    IssueCode.AMBIGUOUS_SHAPE,
                    f"Storage carries both '{ITEMS_BY_USER_KEY}' and '{ITEMS_KEY}'; "
                    f"'{ITEMS_KEY}' was ignored",
                    field=ITEMS_KEY,
                )
            items_by_owner = self._project_owner_map(root.get(ITEMS_BY_USER_KEY))
            mdm_payloads = self._project_mdm_payloads(root.get(MDM_PAYLOADS_KEY))
        else:
            items_by_owner = {SYSTEM_OWNER: self._project_collection(root.get(ITEMS_KEY), SYSTEM_OWNER)}

        for owner, collection in items_by_owner.items():
            logger.debug("Owner %s: %d item(s)", owner, len(collection))

        return Storage(
            version=version,
            items_by_owner=items_by_owner,
            mdm_payloads_by_identifier=mdm_payloads,
            issues=tuple(self._issues),
            arena=dict(self._records),
        )

    # -- containers ---------------------------------------------------------

    def _project_owner_map(self, value: Any) -> Dict[str, ItemCollection]:
        if not is_dictionary(value):
            raise UnrecognizedShapeError(
                f"'{ITEMS_BY_USER_KEY}' must be a dictionary, found {describe(value)}"
            )
        result: Dict[str, ItemCollection] = {}
        for raw_key, items in as_pairs(value):
            owner = self._owner_key(raw_key)
            collection = self._project_collection(items, owner)
            if owner in result:
                # Two archived keys normalizing to the same owner-key: merge.
                for record in collection:
                    result[owner].add(record)
            else:
                result[owner] = collection
        return result

    def _owner_key(self, raw_key: Any) -> str:
        if isinstance(raw_key, int) and not isinstance(raw_key, bool):
            owner = str(raw_key)
            self._issue(
                IssueCode.OWNER_KEY_COERCED,
                f"Numeric owner-key {raw_key} stored as string",
                owner=owner,
                field=ITEMS_BY_USER_KEY,
            )
            return owner
        try:
            return as_string(raw_key)
        except CoercionError as e:
            raise UnrecognizedShapeError(f"Owner-keys must be strings: {e}") from e

    def _project_collection(self, value: Any, owner: str) -> ItemCollection:
        if value is None:
            return ItemCollection()
        if is_collection(value):
            elements = as_elements(value)
        elif is_dictionary(value):
            elements = [item for _, item in as_pairs(value)]
        else:
            raise UnrecognizedShapeError(
                f"Items for owner '{owner}' must be a collection, found {describe(value)}"
            )
        return ItemCollection(self._project_record(element, owner) for element in elements)

    def _project_mdm_payloads(self, value: Any) -> Dict[str, bytes]:
        if value is None:
            return {}
        if not is_dictionary(value):
            self._issue(
                IssueCode.FIELD_TYPE_MISMATCH,
                f"'{MDM_PAYLOADS_KEY}' must be a dictionary, found {describe(value)}",
                field=MDM_PAYLOADS_KEY,
            )
            return {}
        payloads: Dict[str, bytes] = {}
        for raw_key, raw_payload in as_pairs(value):
            try:
                payloads[as_string(raw_key)] = as_data(raw_payload)
            except CoercionError as e:
                self._issue(
                    IssueCode.FIELD_TYPE_MISMATCH,
                    f"MDM payload entry skipped: {e}",
                    field=MDM_PAYLOADS_KEY,
                )
        return payloads

    # -- records ------------------------------------------------------------

    def _project_record(self, value: Any, owner: str) -> ItemRecord:
        obj = _expect_class(value, ITEM_RECORD_CLASS)
        if obj.index in self._records:
            return self._records[obj.index]

        self._in_progress.add(obj.index)
        identifier = _peek_identifier(obj)
        issues: List[ProjectionIssue] = []

        def report(code: IssueCode, key: str, message: str) -> None:
            issues.append(self._issue(code, message, identifier=identifier, owner=owner, field=key))

        values: Dict[str, Any] = {}
        for key, attr in STRING_FIELDS:
            _copy_field(obj, key, attr, as_string, values, report)
        for key, attr in INTEGER_FIELDS:
            _copy_field(obj, key, attr, as_integer, values, report)
        for key, attr in DATA_FIELDS:
            _copy_field(obj, key, attr, as_data, values, report)

        raw_url = obj.get(URL_FIELD)
        if raw_url is not None:
            try:
                values["url"] = parse_url(as_url_string(raw_url))
            except CoercionError as e:
                report(IssueCode.FIELD_TYPE_MISMATCH, URL_FIELD, f"Field '{URL_FIELD}' dropped: {e}")
            except InvalidURLError as e:
                report(IssueCode.INVALID_URL, URL_FIELD, str(e))

        raw_uuid = obj.get(UUID_FIELD)
        if raw_uuid is not None:
            try:
                values["uuid"] = str(as_uuid(raw_uuid)).upper()
            except CoercionError as e:
                report(IssueCode.FIELD_TYPE_MISMATCH, UUID_FIELD, f"Field '{UUID_FIELD}' dropped: {e}")
            except ValueError as e:
                report(IssueCode.INVALID_UUID, UUID_FIELD, f"Invalid UUID: {e}")

        raw_associated = obj.get(ASSOCIATED_FIELD)
        if raw_associated is not None:
            try:
                values["associated_bundle_identifiers"] = tuple(
                    as_string(item) for item in as_elements(raw_associated)
                )
            except CoercionError as e:
                report(
                    IssueCode.FIELD_TYPE_MISMATCH,
                    ASSOCIATED_FIELD,
                    f"Field '{ASSOCIATED_FIELD}' dropped: {e}",
                )

        embedded = self._project_embedded(obj, owner, report)

        unknown = sorted(set(obj.fields) - KNOWN_RECORD_FIELDS)
        if unknown:
            logger.debug("Record %s: ignoring fields %s", identifier, ", ".join(unknown))

        record = ItemRecord(
            index=obj.index,
            embedded_items=embedded,
            issues=tuple(issues),
            **values,
        )
        self._in_progress.discard(obj.index)
        self._records[obj.index] = record
        return record

    def _project_embedded(self, obj: GenericObject, owner: str, report: Callable) -> Tuple:
        raw = obj.get(EMBEDDED_FIELD)
        if raw is None:
            return ()
        try:
            elements = as_elements(raw)
        except CoercionError as e:
            report(IssueCode.FIELD_TYPE_MISMATCH, EMBEDDED_FIELD, f"Field '{EMBEDDED_FIELD}' dropped: {e}")
            return ()

        embedded: Dict[int, Any] = {}
        for element in elements:
            child = _expect_class(element, ITEM_RECORD_CLASS)
            if child.index in embedded:
                continue
            if child.index in self._in_progress:
                # Ancestor still under projection: close the cycle without owning it.
                logger.debug("Cycle at object %d broken with a back-reference", child.index)
                embedded[child.index] = ItemBackReference(
                    index=child.index, identifier=_peek_identifier(child)
                )
            else:
                embedded[child.index] = self._project_record(child, owner)
        return tuple(sorted(embedded.values(), key=record_sort_key))

    def _issue(
        self,
        code: IssueCode,
        message: str,
        identifier: Optional[str] = None,
        owner: Optional[str] = None,
        field: Optional[str] = None,
    ) -> ProjectionIssue:
        issue = ProjectionIssue(code=code, message=message, identifier=identifier, owner=owner, field=field)
        logger.warning("%s (record=%s, field=%s): %s", code.value, identifier, field, message)
        self._issues.append(issue)
        return issue


def _peek_identifier(obj: GenericObject) -> Optional[str]:
    try:
        raw = obj.get(IDENTIFIER_FIELD)
        return None if raw is None else as_string(raw)
    except CoercionError:
        return None


def _copy_field(
    obj: GenericObject,
    key: str,
    attr: str,
    coerce: Callable[[Any], Any],
    values: Dict[str, Any],
    report: Callable[[IssueCode, str, str], None],
) -> None:
    raw = obj.get(key)
    if raw is None:
        return
    try:
        values[attr] = coerce(raw)
    except CoercionError as e:
        report(IssueCode.FIELD_TYPE_MISMATCH, key, f"Field '{key}' dropped: {e}")
