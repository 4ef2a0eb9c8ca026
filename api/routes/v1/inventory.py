"""
api/routes/v1/inventory.py -- Inventory and exception routes for the ETracker REST API.

Routes:
  GET    /inventory                                       -- search documents
  GET    /inventory/{document_id}                         -- document detail + entries
  PATCH  /inventory/{document_id}/items/{group}/{item_key} -- update one entry
  GET    /inventory/{document_id}/history                 -- audit history

Handlers are thin pass-throughs: validation, state transitions and audit
writes all happen in core/engine.py. Domain errors (not found, invalid
input, storage failure) propagate to the TrackerError handler in api/main.py,
which renders the ErrorResponse envelope.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.dependencies import get_actor
from api.limiter import limiter
from api.models import (
    AuditRecordOut,
    DocumentResponse,
    DocumentSummary,
    EntryOut,
    ErrorDetail,
    ItemUpdateRequest,
    SearchResponse,
    UpdateResponse,
)
from core.engine import ExceptionEngine
from core.models import Actor
from inventory.audit import AuditTrail
from inventory.store import InventoryStore

router = APIRouter()


def _not_found(document_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"Inventory document {document_id} not found.").model_dump(),
    )


# ---------------------------------------------------------------------------
# GET /inventory -- search
# ---------------------------------------------------------------------------


@router.get("/inventory", response_model=SearchResponse)
@limiter.limit("120/minute")
def search_inventory(
    request: Request,
    hostname: Optional[str] = None,
    reference_code: Optional[str] = None,
    owner: Optional[str] = None,
    manager: Optional[str] = None,
    group: Optional[str] = None,
    application: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    skip: int = Query(0, ge=0),
) -> SearchResponse:
    """Search inventory documents. Every filter is a case-insensitive substring match."""
    store: InventoryStore = request.app.state.inventory
    criteria = {
        "hostname": hostname,
        "reference_code": reference_code,
        "owner": owner,
        "manager": manager,
        "group": group,
        "application": application,
    }
    result = store.search(criteria, limit=limit, skip=skip)
    return SearchResponse(
        items=[DocumentSummary.from_document(d) for d in result.items],
        total=result.total,
        limit=limit,
        skip=skip,
    )


# ---------------------------------------------------------------------------
# GET /inventory/{document_id} -- detail
# ---------------------------------------------------------------------------


@router.get("/inventory/{document_id}", response_model=DocumentResponse)
@limiter.limit("120/minute")
def get_document(request: Request, document_id: str) -> DocumentResponse:
    """Return one document with every enforcement entry and its enforced-key choices."""
    store: InventoryStore = request.app.state.inventory
    document = store.find_by_id(document_id)
    if document is None:
        raise _not_found(document_id)
    return DocumentResponse.from_document(document)


# ---------------------------------------------------------------------------
# PATCH /inventory/{document_id}/items/{group}/{item_key} -- update entry
# ---------------------------------------------------------------------------


@router.patch("/inventory/{document_id}/items/{group}/{item_key}", response_model=UpdateResponse)
@limiter.limit("60/minute")
def update_item(
    request: Request,
    document_id: str,
    group: str,
    item_key: str,
    body: ItemUpdateRequest,
    actor: Actor = Depends(get_actor),
) -> UpdateResponse:
    """Change enforcement or exception state for one control.

    changed=false (with previous == current) means the request matched the
    stored state and nothing was written or audited.
    """
    engine: ExceptionEngine = request.app.state.engine
    result = engine.update_item(document_id, group, item_key, body.to_domain(), actor)
    return UpdateResponse(
        previous=EntryOut.from_entry(result.previous),
        current=EntryOut.from_entry(result.current),
        changed=result.changed,
    )


# ---------------------------------------------------------------------------
# GET /inventory/{document_id}/history -- audit trail
# ---------------------------------------------------------------------------


@router.get("/inventory/{document_id}/history", response_model=list[AuditRecordOut])
@limiter.limit("120/minute")
def get_history(
    request: Request,
    document_id: str,
    item_key: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
) -> list[AuditRecordOut]:
    """Return audit records for a document, most recent first, optionally for one item."""
    store: InventoryStore = request.app.state.inventory
    audit: AuditTrail = request.app.state.audit
    if store.find_by_id(document_id) is None:
        raise _not_found(document_id)
    records = audit.history(document_id, item_key=item_key, limit=limit)
    return [AuditRecordOut.from_record(r) for r in records]
