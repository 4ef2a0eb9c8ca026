"""
core/engine.py -- Exception lifecycle engine.

update_item() is the only way an enforcement entry changes. Given the stored
entry and a requested ItemUpdate it resolves the next state, writes it as one
EntryPatch, re-reads the result and appends an audit record.

Resolution rules, in order:
  reason            payload reason if non-empty, else the previous reason
  exception_active  payload value if supplied, else previous, else False
  enforced          payload value if supplied, else previous, else True;
                    always False while an exception is active, so lifting
                    a waiver without an explicit value keeps False
  enforced_key      "exception:manual" while an exception is active;
                    otherwise the payload/previous key, with any value in the
                    "exception:" namespace discarded to null
  exception         rebuilt while active (created_at preserved, updated_at
                    refreshed, expires_at from payload / previous / default
                    duration); removed entirely when inactive

Nothing is written when the patched entry equals the stored one: the caller
gets previous == current and changed=False, and no audit record appears.

Failure policy: StorageError is never caught here. If the audit append fails
after the entry write succeeded, the write stands and the error propagates.

Layer rule: core/ does not import inventory/. The store and the audit trail
arrive through the constructor and are typed by the protocols below.
"""

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Protocol

from core.config import DEFAULT_EXCEPTION_DURATION_DAYS, Settings
from core.dates import days_from, format_iso, parse_expiration, utcnow
from core.errors import DocumentNotFoundError, ValidationError
from core.models import (
    EXCEPTION_KEY_PREFIX,
    MANUAL_EXCEPTION_KEY,
    Actor,
    Approver,
    AuditRecord,
    EnforcementEntry,
    EntryPatch,
    ExceptionRecord,
    InventoryDocument,
    ItemUpdate,
    UpdateResult,
)

logger = logging.getLogger("etracker.engine")

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


class EntryStore(Protocol):
    def find_by_id(self, document_id: str) -> Optional[InventoryDocument]: ...

    def update_entry(self, document_id: str, group: str, item_key: str, patch: EntryPatch) -> bool: ...


class AuditSink(Protocol):
    def append(self, record: AuditRecord) -> int: ...


@dataclass(frozen=True)
class ExceptionPolicy:
    """Exception defaults the engine needs from configuration."""

    default_duration_days: int = DEFAULT_EXCEPTION_DURATION_DAYS

    @property
    def duration_days(self) -> int:
        return max(1, self.default_duration_days)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExceptionPolicy":
        return cls(default_duration_days=settings.default_exception_duration_days)


# ---------------------------------------------------------------------------
# Input cleaning
# ---------------------------------------------------------------------------


def clean_line(value: object) -> str:
    """Single-line text: markup stripped, whitespace runs collapsed, trimmed."""
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", _TAG_RE.sub("", str(value))).strip()


def clean_block(value: object) -> str:
    """Multi-line text (reasons): markup stripped, line breaks kept, trimmed."""
    if value is None:
        return ""
    text = _TAG_RE.sub("", str(value)).replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n")).strip()


def _require_segment(value: object, field: str) -> str:
    """Validate a group name or item key. Dots are allowed ("1.1.1")."""
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(field, "cannot be empty")
    return text


def normalize_enforced_key(candidate: Optional[str], exception_active: bool) -> Optional[str]:
    if exception_active:
        return MANUAL_EXCEPTION_KEY
    if candidate is None:
        return None
    key = clean_line(candidate)
    if not key or key.startswith(EXCEPTION_KEY_PREFIX):
        return None
    return key


def _clean_metadata(raw: Optional[Mapping[str, object]]) -> dict[str, str]:
    if not raw:
        return {}
    metadata: dict[str, str] = {}
    for key, value in raw.items():
        meta_key = clean_line(key)
        meta_value = clean_line(value)
        if meta_key and meta_value:
            metadata[meta_key] = meta_value
    return metadata


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ExceptionEngine:
    def __init__(
        self,
        store: EntryStore,
        audit: AuditSink,
        policy: Optional[ExceptionPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._policy = policy or ExceptionPolicy()
        self._clock = clock

    def update_item(
        self,
        document_id: str,
        group: str,
        item_key: str,
        payload: ItemUpdate,
        actor: Actor,
    ) -> UpdateResult:
        """Apply a requested change to one enforcement entry.

        Raises ValidationError for malformed identifiers (before any storage
        access) and DocumentNotFoundError when the document does not exist.
        """
        document_id = str(document_id or "").strip()
        if not document_id:
            raise ValidationError("document_id", "cannot be empty")
        group = _require_segment(group, "group")
        item_key = _require_segment(item_key, "item_key")
        if actor is None:
            raise ValidationError("actor", "an authenticated actor is required")

        document = self._store.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        previous = document.entry(group, item_key)
        previous_exception = previous.exception

        reason = clean_block(payload.exception_reason)
        if not reason and previous_exception is not None and previous_exception.reason:
            reason = previous_exception.reason

        if payload.exception_active is not None:
            exception_active = bool(payload.exception_active)
        else:
            exception_active = previous_exception.active if previous_exception is not None else False

        candidate_key = payload.enforced_key if payload.enforced_key is not None else previous.enforced_key

        if payload.enforced is not None:
            enforced = bool(payload.enforced)
        elif previous.enforced is None:
            enforced = True
        else:
            enforced = previous.enforced
        if exception_active:
            enforced = False

        enforced_key = normalize_enforced_key(candidate_key, exception_active)

        exception: Optional[ExceptionRecord] = None
        if exception_active:
            exception = self._build_exception(payload, previous_exception, reason, actor)

        patch = EntryPatch().set_field("enforced", enforced)
        if enforced_key is None:
            patch.unset_field("enforced_key")
        else:
            patch.set_field("enforced_key", enforced_key)
        if exception is None:
            patch.unset_field("exception")
        else:
            patch.set_field("exception", exception.to_dict())

        if not self._store.update_entry(document_id, group, item_key, patch):
            logger.debug("No change for %s %s.%s", document_id, group, item_key)
            return UpdateResult(previous=previous, current=previous, changed=False)

        refreshed = self._store.find_by_id(document_id)
        if refreshed is not None:
            current = refreshed.entry(group, item_key)
        else:
            current = EnforcementEntry.from_dict(patch.apply(previous.to_dict()))

        logger.info(
            "%s %s.%s: enforced=%s exception=%s by %s",
            document_id,
            group,
            item_key,
            current.enforced,
            "active" if current.has_active_exception else "none",
            actor.name or actor.id,
        )

        record = AuditRecord(
            document_id=document_id,
            item_type=group,
            item_key=item_key,
            previous_state=previous.to_dict(),
            new_state=current.to_dict(),
            reason=reason,
            actor_id=str(actor.id),
            actor_name=actor.name,
        )
        try:
            self._audit.append(record)
        except Exception:
            logger.error("Entry %s %s.%s was updated but the audit append failed", document_id, group, item_key)
            raise

        return UpdateResult(previous=previous, current=current, changed=True)

    # ------------------------------------------------------------------
    # Exception record
    # ------------------------------------------------------------------

    def _build_exception(
        self,
        payload: ItemUpdate,
        previous: Optional[ExceptionRecord],
        reason: str,
        actor: Actor,
    ) -> ExceptionRecord:
        now = self._clock()
        now_iso = format_iso(now)
        built = ExceptionRecord(
            active=True,
            reason=reason or None,
            approver=Approver(id=str(actor.id), name=clean_line(actor.name)),
            created_at=previous.created_at if previous is not None and previous.created_at else now_iso,
            updated_at=now_iso,
            expires_at=self._resolve_expiration(payload.exception_expires_at, previous, now),
            metadata=_clean_metadata(payload.exception_metadata),
        )
        # Resubmitting the same waiver is not an edit: keep the stored record
        # so updated_at does not move and the write is skipped.
        if previous is not None and replace(built, updated_at=previous.updated_at) == previous:
            return previous
        return built

    def _resolve_expiration(self, requested: Optional[str], previous: Optional[ExceptionRecord], now: datetime) -> str:
        normalized = parse_expiration(requested)
        if normalized is not None:
            return normalized
        if previous is not None and previous.expires_at:
            return previous.expires_at
        return days_from(now, self._policy.duration_days)
