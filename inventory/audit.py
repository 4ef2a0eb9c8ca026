"""
inventory/audit.py -- Append-only audit trail for enforcement changes.

One AuditRecord per successful ExceptionEngine.update_item() write. Records
are never updated or deleted -- this module has no code path that does
either. Entry snapshots are serialized as JSON text, the same way the
document store keeps its bodies portable across SQLite and PostgreSQL.

created_at is assigned here, in UTC, at insert time; whatever the caller put
on the record is ignored.

Usage:
    audit = AuditTrail()
    audit.append(record)
    audit.history(document_id, item_key="1.1.1", limit=20)   # newest first
    audit.history_for_document(document_id, limit=50)
"""

import json
import logging
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text

from core.config import get_settings
from core.dates import now_iso
from core.models import AuditRecord
from inventory.db import create_db_engine, storage_errors

logger = logging.getLogger("etracker.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_audit = Table(
    "exception_audit",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("document_id", String(64), nullable=False, index=True),
    Column("item_type", String(32), nullable=False),
    Column("item_key", String(190), nullable=False, index=True),
    Column("previous_state", Text),  # JSON object serialized as text
    Column("new_state", Text),  # JSON object serialized as text
    Column("reason", Text),
    Column("actor_id", String(64)),
    Column("actor_name", String(190)),
    Column("created_at", String(32), nullable=False),
)


class AuditTrail:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine = create_db_engine(db_url or get_settings().audit_db_url)
        with storage_errors("audit", "initialize"):
            metadata.create_all(self.engine)

    def append(self, record: AuditRecord) -> int:
        """Insert a record and return its assigned ID."""
        with storage_errors("audit", "append"), self.engine.begin() as conn:
            result = conn.execute(
                _audit.insert().values(
                    document_id=record.document_id,
                    item_type=record.item_type,
                    item_key=record.item_key,
                    previous_state=json.dumps(record.previous_state),
                    new_state=json.dumps(record.new_state),
                    reason=record.reason,
                    actor_id=record.actor_id,
                    actor_name=record.actor_name,
                    created_at=now_iso(),
                )
            )
            record_id = result.inserted_primary_key[0]
        logger.debug("Audit record %s for %s %s.%s", record_id, record.document_id, record.item_type, record.item_key)
        return record_id

    def history(self, document_id: str, item_key: Optional[str] = None, limit: int = 20) -> list[AuditRecord]:
        """Return audit records for a document (optionally one item), most recent first."""
        stmt = _audit.select().where(_audit.c.document_id == document_id)
        if item_key is not None:
            stmt = stmt.where(_audit.c.item_key == item_key)
        stmt = stmt.order_by(_audit.c.created_at.desc(), _audit.c.id.desc()).limit(max(1, limit))
        with storage_errors("audit", "history"), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_record(r) for r in rows]

    def history_for_document(self, document_id: str, limit: int = 50) -> list[AuditRecord]:
        """Every item's history for one document -- the view the inventory detail page shows."""
        return self.history(document_id, item_key=None, limit=limit)

    def ping(self) -> bool:
        with storage_errors("audit", "ping"), self.engine.connect() as conn:
            conn.execute(_audit.select().limit(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _load_state(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        state = json.loads(raw)
    except ValueError:
        return {}
    return state if isinstance(state, dict) else {}


def _row_to_record(row) -> AuditRecord:
    return AuditRecord(
        id=row.id,
        document_id=row.document_id,
        item_type=row.item_type,
        item_key=row.item_key,
        previous_state=_load_state(row.previous_state),
        new_state=_load_state(row.new_state),
        reason=row.reason or "",
        actor_id=row.actor_id or "",
        actor_name=row.actor_name or "",
        created_at=row.created_at,
    )
