"""
core/models.py -- Domain dataclasses for ETracker.

An inventory document (one per server) carries enforcement groups such as
"CIS" or "Agents". Each group maps a control key to an EnforcementEntry, and
an entry may hold an ExceptionRecord (a time-bounded waiver).

These dataclasses are the typed view of the stored JSON. The from_dict()
constructors are the validation boundary: inventory/store.py calls them on
every read, so the rest of the code never walks untyped nested mappings. A
missing entry is an explicit empty EnforcementEntry(), never None.

to_dict() produces the stored representation and is what the audit trail
snapshots, so absent fields stay absent rather than becoming null.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Enforced keys in this namespace are reserved for exceptions. A caller can
# never store one directly; the engine discards it to null.
EXCEPTION_KEY_PREFIX = "exception:"
MANUAL_EXCEPTION_KEY = "exception:manual"

# Tag lists on an entry that can be chosen as the enforced key, in display
# order. The choice value is "<source>:<tag>", e.g. "platforms:linux".
ENFORCED_KEY_SOURCES: tuple[tuple[str, str], ...] = (
    ("platforms", "Platform"),
    ("hardware", "Hardware"),
    ("environment", "Environment"),
)

PATCHABLE_FIELDS = frozenset({"enforced", "enforced_key", "exception"})


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and v != ""]


# ---------------------------------------------------------------------------
# Exceptions (waivers)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """The authenticated caller. Supplied by the presentation layer, never looked up."""

    id: str
    name: str


@dataclass
class Approver:
    id: str = ""
    name: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass
class ExceptionRecord:
    """A waiver on one control.

    created_at is set once and survives every later edit; updated_at moves
    with each edit. metadata holds free-form notes (e.g. {"note": "..."}).
    """

    active: bool = False
    reason: Optional[str] = None
    approver: Optional[Approver] = None
    created_at: Optional[str] = None  # ISO 8601
    updated_at: Optional[str] = None  # ISO 8601
    expires_at: Optional[str] = None  # ISO 8601
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Compact stored form: null and empty-string fields are dropped."""
        data: dict[str, Any] = {
            "active": self.active,
            "reason": self.reason,
            "approver": self.approver.to_dict() if self.approver is not None else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "expires_at": self.expires_at,
            "metadata": dict(self.metadata) if self.metadata else None,
        }
        return {k: v for k, v in data.items() if v is not None and v != ""}

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["ExceptionRecord"]:
        if not isinstance(raw, dict):
            return None
        approver_raw = raw.get("approver")
        approver = None
        if isinstance(approver_raw, dict):
            approver = Approver(
                id=str(approver_raw.get("id") or ""),
                name=str(approver_raw.get("name") or ""),
            )
        metadata_raw = raw.get("metadata")
        metadata: dict[str, str] = {}
        if isinstance(metadata_raw, dict):
            metadata = {str(k): str(v) for k, v in metadata_raw.items() if v is not None}
        return cls(
            active=bool(raw.get("active")),
            reason=_optional_str(raw.get("reason")),
            approver=approver,
            created_at=_optional_str(raw.get("created_at")),
            updated_at=_optional_str(raw.get("updated_at")),
            expires_at=_optional_str(raw.get("expires_at")),
            metadata=metadata,
        )


# ---------------------------------------------------------------------------
# Enforcement entries
# ---------------------------------------------------------------------------


@dataclass
class EnforcementEntry:
    """Control-level enforcement state.

    enforced is None when the stored entry has no "enforced" field. Only an
    explicit True counts as enforced (see is_enforced). enforced_key None
    means the control matched automatically ("best fit").

    platforms / hardware / environment are read-only context from the
    inventory load. extra keeps any other stored keys so a round trip through
    to_dict() never loses data.
    """

    enforced: Optional[bool] = None
    enforced_key: Optional[str] = None
    exception: Optional[ExceptionRecord] = None
    platforms: list[str] = field(default_factory=list)
    hardware: list[str] = field(default_factory=list)
    environment: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_enforced(self) -> bool:
        return self.enforced is True

    @property
    def has_active_exception(self) -> bool:
        return self.exception is not None and self.exception.active

    def enforced_key_choices(self) -> dict[str, str]:
        """Return selectable enforced keys mapped to display labels.

        "" (automatic) comes first, then one choice per non-empty tag in
        ENFORCED_KEY_SOURCES order, then the current key if it is not one of
        those.
        """
        choices: dict[str, str] = {"": "Automatic (match best fit)"}
        for source, label in ENFORCED_KEY_SOURCES:
            for tag in getattr(self, source):
                choices[f"{source}:{tag}"] = f"{label}: {tag}"
        if self.enforced_key and self.enforced_key not in choices:
            choices[self.enforced_key] = f"Existing: {self.enforced_key}"
        return choices

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = copy.deepcopy(self.extra)
        if self.enforced is not None:
            data["enforced"] = self.enforced
        if self.enforced_key is not None:
            data["enforced_key"] = self.enforced_key
        if self.exception is not None:
            data["exception"] = self.exception.to_dict()
        for source, _label in ENFORCED_KEY_SOURCES:
            tags = getattr(self, source)
            if tags:
                data[source] = list(tags)
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> "EnforcementEntry":
        """Build an entry from its stored mapping. Anything else yields an empty entry."""
        if not isinstance(raw, dict):
            return cls()
        known = {"enforced", "enforced_key", "exception"} | {s for s, _ in ENFORCED_KEY_SOURCES}
        enforced = raw.get("enforced")
        return cls(
            enforced=bool(enforced) if enforced is not None else None,
            enforced_key=_optional_str(raw.get("enforced_key")),
            exception=ExceptionRecord.from_dict(raw.get("exception")),
            platforms=_str_list(raw.get("platforms")),
            hardware=_str_list(raw.get("hardware")),
            environment=_str_list(raw.get("environment")),
            extra={k: copy.deepcopy(v) for k, v in raw.items() if k not in known},
        )


# ---------------------------------------------------------------------------
# Inventory documents
# ---------------------------------------------------------------------------


@dataclass
class InventoryDocument:
    """One server. descriptor is read-only host/application metadata."""

    id: str
    descriptor: dict[str, Any] = field(default_factory=dict)
    enforced: dict[str, dict[str, EnforcementEntry]] = field(default_factory=dict)

    @property
    def hostname(self) -> str:
        return str(self.descriptor.get("hostname") or "")

    @property
    def application(self) -> str:
        instance = self.descriptor.get("instance")
        if isinstance(instance, dict):
            return str(instance.get("name") or "")
        return ""

    def entry(self, group: str, item_key: str) -> EnforcementEntry:
        return self.enforced.get(group, {}).get(item_key) or EnforcementEntry()

    def iter_entries(self) -> Iterator[tuple[str, str, EnforcementEntry]]:
        for group, items in self.enforced.items():
            for item_key, entry in items.items():
                yield group, item_key, entry

    def body(self) -> dict[str, Any]:
        """Stored JSON body (everything except the id)."""
        return {
            "descriptor": copy.deepcopy(self.descriptor),
            "enforced": {
                group: {key: entry.to_dict() for key, entry in items.items()} for group, items in self.enforced.items()
            },
        }

    @classmethod
    def from_body(cls, document_id: str, body: Any) -> "InventoryDocument":
        body = body if isinstance(body, dict) else {}
        descriptor = body.get("descriptor")
        groups: dict[str, dict[str, EnforcementEntry]] = {}
        enforced_raw = body.get("enforced")
        if isinstance(enforced_raw, dict):
            for group, items in enforced_raw.items():
                if not isinstance(items, dict):
                    continue
                groups[str(group)] = {
                    str(key): EnforcementEntry.from_dict(value) for key, value in items.items() if isinstance(value, dict)
                }
        return cls(
            id=document_id,
            descriptor=copy.deepcopy(descriptor) if isinstance(descriptor, dict) else {},
            enforced=groups,
        )


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


@dataclass
class ItemUpdate:
    """Requested change to one entry. None on any field means "not supplied".

    enforced_key="" explicitly asks for automatic best fit; None keeps the
    previous key.
    """

    enforced: Optional[bool] = None
    enforced_key: Optional[str] = None
    exception_active: Optional[bool] = None
    exception_reason: Optional[str] = None
    exception_metadata: Optional[dict[str, str]] = None
    exception_expires_at: Optional[str] = None


@dataclass
class EntryPatch:
    """Partial update for one entry: fields to set and fields to remove.

    The builder methods keep the two sides disjoint, so a field is never both
    set and removed in the same write.
    """

    values: dict[str, Any] = field(default_factory=dict)
    removals: set[str] = field(default_factory=set)

    def set_field(self, name: str, value: Any) -> "EntryPatch":
        _check_patchable(name)
        self.removals.discard(name)
        self.values[name] = value
        return self

    def unset_field(self, name: str) -> "EntryPatch":
        _check_patchable(name)
        self.values.pop(name, None)
        self.removals.add(name)
        return self

    @property
    def is_empty(self) -> bool:
        return not self.values and not self.removals

    def apply(self, stored: dict[str, Any]) -> dict[str, Any]:
        """Return a patched copy of a stored entry mapping."""
        patched = copy.deepcopy(stored)
        for name in self.removals:
            patched.pop(name, None)
        for name, value in self.values.items():
            patched[name] = copy.deepcopy(value)
        return patched


def _check_patchable(name: str) -> None:
    if name not in PATCHABLE_FIELDS:
        raise ValueError(f"Field is not patchable: {name}")


@dataclass
class UpdateResult:
    """Outcome of ExceptionEngine.update_item.

    changed is False when nothing differed from storage; previous and current
    are then the same entry and no audit record was written.
    """

    previous: EnforcementEntry
    current: EnforcementEntry
    changed: bool


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass
class AuditRecord:
    """Immutable audit entry written once per successful entry mutation.

    Records are never updated or deleted -- only inserted. previous_state and
    new_state are entry snapshots in stored (to_dict) form.

    id and created_at are None until the audit trail writes the record.
    """

    document_id: str
    item_type: str  # group name, e.g. "CIS"
    item_key: str
    previous_state: dict[str, Any]
    new_state: dict[str, Any]
    reason: str
    actor_id: str
    actor_name: str
    created_at: Optional[str] = None
    id: Optional[int] = None
