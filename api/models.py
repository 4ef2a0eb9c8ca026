"""
API request and response models for ETracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two
through the from_* factory methods colocated here.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import AuditRecord, EnforcementEntry, ExceptionRecord, InventoryDocument, ItemUpdate

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Enforcement entries
# ---------------------------------------------------------------------------


class ApproverOut(BaseModel):
    id: str
    name: str


class ExceptionOut(BaseModel):
    active: bool
    reason: Optional[str] = None
    approver: Optional[ApproverOut] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    expires_at: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ExceptionRecord) -> "ExceptionOut":
        approver = None
        if record.approver is not None:
            approver = ApproverOut(id=record.approver.id, name=record.approver.name)
        return cls(
            active=record.active,
            reason=record.reason,
            approver=approver,
            created_at=record.created_at,
            updated_at=record.updated_at,
            expires_at=record.expires_at,
            metadata=dict(record.metadata),
        )


class EntryOut(BaseModel):
    """One enforcement entry. enforced is null when the stored entry has no value."""

    enforced: Optional[bool] = None
    enforced_key: Optional[str] = None
    exception: Optional[ExceptionOut] = None
    platforms: list[str] = Field(default_factory=list)
    hardware: list[str] = Field(default_factory=list)
    environment: list[str] = Field(default_factory=list)
    # Only populated on the document detail route.
    enforced_key_choices: Optional[dict[str, str]] = None

    @classmethod
    def from_entry(cls, entry: EnforcementEntry, with_choices: bool = False) -> "EntryOut":
        return cls(
            enforced=entry.enforced,
            enforced_key=entry.enforced_key,
            exception=ExceptionOut.from_record(entry.exception) if entry.exception is not None else None,
            platforms=list(entry.platforms),
            hardware=list(entry.hardware),
            environment=list(entry.environment),
            enforced_key_choices=entry.enforced_key_choices() if with_choices else None,
        )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class DocumentSummary(BaseModel):
    """One row in search results."""

    model_config = ConfigDict(frozen=True)

    id: str
    hostname: str
    application: str
    active_exceptions: int
    unenforced: int

    @classmethod
    def from_document(cls, document: InventoryDocument) -> "DocumentSummary":
        active = unenforced = 0
        for _group, _key, entry in document.iter_entries():
            if entry.has_active_exception:
                active += 1
            if not entry.is_enforced:
                unenforced += 1
        return cls(
            id=document.id,
            hostname=document.hostname,
            application=document.application,
            active_exceptions=active,
            unenforced=unenforced,
        )


class SearchResponse(BaseModel):
    items: list[DocumentSummary]
    total: int
    limit: int
    skip: int


class DocumentResponse(BaseModel):
    id: str
    hostname: str
    application: str
    descriptor: dict[str, Any]
    groups: dict[str, dict[str, EntryOut]]

    @classmethod
    def from_document(cls, document: InventoryDocument) -> "DocumentResponse":
        return cls(
            id=document.id,
            hostname=document.hostname,
            application=document.application,
            descriptor=document.descriptor,
            groups={
                group: {key: EntryOut.from_entry(entry, with_choices=True) for key, entry in items.items()}
                for group, items in document.enforced.items()
            },
        )


class ItemUpdateRequest(BaseModel):
    """Request body for PATCH /api/v1/inventory/{id}/items/{group}/{item_key}.

    Omitted (or null) fields keep their previous value. enforced_key="" asks
    for automatic best-fit matching. exception_expires_at accepts a date
    ("2025-01-15", meaning end of day UTC) or an ISO 8601 datetime.
    """

    model_config = ConfigDict(extra="forbid")

    enforced: Optional[bool] = None
    enforced_key: Optional[str] = Field(default=None, max_length=190)
    exception_active: Optional[bool] = None
    exception_reason: Optional[str] = Field(default=None, max_length=5000)
    exception_metadata: Optional[dict[str, str]] = None
    exception_expires_at: Optional[str] = Field(default=None, max_length=64)

    def to_domain(self) -> ItemUpdate:
        return ItemUpdate(
            enforced=self.enforced,
            enforced_key=self.enforced_key,
            exception_active=self.exception_active,
            exception_reason=self.exception_reason,
            exception_metadata=self.exception_metadata,
            exception_expires_at=self.exception_expires_at,
        )


class UpdateResponse(BaseModel):
    """previous == current and changed=false means nothing needed saving."""

    previous: EntryOut
    current: EntryOut
    changed: bool


class AuditRecordOut(BaseModel):
    id: Optional[int] = None
    document_id: str
    item_type: str
    item_key: str
    previous_state: dict[str, Any]
    new_state: dict[str, Any]
    reason: str
    actor_id: str
    actor_name: str
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordOut":
        return cls(
            id=record.id,
            document_id=record.document_id,
            item_type=record.item_type,
            item_key=record.item_key,
            previous_state=record.previous_state,
            new_state=record.new_state,
            reason=record.reason,
            actor_id=record.actor_id,
            actor_name=record.actor_name,
            created_at=record.created_at,
        )


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ExpiringRowOut(BaseModel):
    document_id: str
    hostname: str
    application: str
    group: str
    item_key: str
    enforced_key: Optional[str] = None
    reason: str
    approver: str
    updated_at: Optional[str] = None
    expires_at: str
    days_until: int


class UnenforcedRowOut(BaseModel):
    document_id: str
    hostname: str
    application: str
    group: str
    item_key: str
    exception_active: bool
    exception_expires_at: Optional[str] = None
    reason: str
    enforced_key: Optional[str] = None


class ReportSummaryOut(BaseModel):
    total_active: int
    by_group: dict[str, int]
    overdue: int
    due_soon: int
    due_later: int


class ReportResponse(BaseModel):
    """Response for GET /api/v1/reports. by_group is ordered by count, descending."""

    expiring_window_days: int
    unenforced_limit: int
    expiring: list[ExpiringRowOut]
    summary: ReportSummaryOut
    unenforced: list[UnenforcedRowOut]
