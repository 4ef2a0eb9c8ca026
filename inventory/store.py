"""
inventory/store.py -- SQLAlchemy-backed document store for server inventory.

Each inventory document is one row: the JSON body (descriptor + enforcement
groups) lives in a JSON column, and the descriptor fields people search on
(hostname, reference code, owner, manager, group, application) are copied
into plain indexed columns at insert time. The body stays the source of
truth; the copies exist only so search() can filter in SQL.

Pattern: Repository + Data Mapper. InventoryStore is the repository;
_row_to_document() is the mapper, and it is the validation boundary: raw JSON
goes in, a typed InventoryDocument comes out (see core/models.py).

update_entry() is the only write path for enforcement state. It applies an
EntryPatch to one entry and writes the body back only if the document
revision is unchanged since the read, retrying otherwise. Concurrent updates
to different entries of the same document therefore never clobber each
other. Two writers racing on the same entry is last-writer-wins.

Security: all queries use bound parameters. Search terms are LIKE-escaped so
"%" and "_" match literally.

Usage:
    store = InventoryStore()                                # SQLite default
    store = InventoryStore("postgresql://user:pw@host/db")  # PostgreSQL
    doc_id = store.insert_document({"descriptor": {...}, "enforced": {...}})
    result = store.search({"hostname": "web"}, limit=20)
    store.update_entry(doc_id, "CIS", "1.1.1", patch)
    for document in store.iterate_all(batch_size=200): ...
    store.close()
"""

import copy
import logging
import uuid
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, Text, and_, delete, func, select, text

from core.config import get_settings
from core.dates import now_iso
from core.errors import StorageError, ValidationError
from core.models import EntryPatch, InventoryDocument
from inventory.db import create_db_engine, storage_errors

logger = logging.getLogger("etracker.inventory")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_documents = Table(
    "inventory_documents",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("hostname", String(255), nullable=False, server_default="", index=True),
    Column("reference_code", String(255)),
    Column("owner", String(255)),
    Column("manager", String(255)),
    Column("group_tag", String(255)),
    Column("application", Text),  # instance name + every instances[].name, newline-joined
    Column("body", JSON, nullable=False),
    Column("revision", Integer, nullable=False, server_default="0"),  # bumped on every entry update
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Search criteria key -> indexed column.
_SEARCH_COLUMNS = {
    "hostname": _documents.c.hostname,
    "reference_code": _documents.c.reference_code,
    "owner": _documents.c.owner,
    "manager": _documents.c.manager,
    "group": _documents.c.group_tag,
    "application": _documents.c.application,
}

SEARCH_FIELDS = tuple(_SEARCH_COLUMNS)

# Optimistic update retries before update_entry gives up.
_MAX_UPDATE_ATTEMPTS = 5


@dataclass
class SearchResult:
    items: list[InventoryDocument] = field(default_factory=list)
    total: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _build_filter(criteria: Mapping[str, Any]):
    """Translate sparse search criteria into a SQL condition (None = match all).

    Blank values are ignored. Unknown keys are rejected rather than silently
    widening the result set.
    """
    conditions = []
    for key, value in criteria.items():
        if value is None or str(value).strip() == "":
            continue
        column = _SEARCH_COLUMNS.get(key)
        if column is None:
            raise ValidationError(key, f"unknown search field (expected one of: {', '.join(SEARCH_FIELDS)})")
        pattern = f"%{_escape_like(str(value).strip())}%"
        conditions.append(column.ilike(pattern, escape="\\"))
    if not conditions:
        return None
    return and_(*conditions)


def _name_of(value: Any) -> Optional[str]:
    """Return value["name"] for a {"name": ...} mapping, or the value itself if it is a string."""
    if isinstance(value, dict):
        value = value.get("name")
    if value is None or value == "":
        return None
    return str(value)


def _search_columns_for(descriptor: Mapping[str, Any]) -> dict[str, Optional[str]]:
    instance = descriptor.get("instance")
    instance = instance if isinstance(instance, dict) else {}
    applications = [_name_of(instance)]
    instances = descriptor.get("instances")
    if isinstance(instances, list):
        applications.extend(_name_of(i) for i in instances)
    names = [a for a in applications if a]
    return {
        "hostname": str(descriptor.get("hostname") or ""),
        "reference_code": _name_of(instance.get("reference_code")),
        "owner": _name_of(instance.get("owner")),
        "manager": _name_of(instance.get("manager")),
        "group_tag": _name_of(instance.get("group")),
        "application": "\n".join(dict.fromkeys(names)) or None,
    }


def _patch_body(body: dict[str, Any], group: str, item_key: str, patch: EntryPatch) -> bool:
    """Patch enforced.<group>.<item_key> in place. Returns False if nothing changed."""
    groups = body.get("enforced")
    if not isinstance(groups, dict):
        groups = body["enforced"] = {}
    items = groups.get(group)
    if not isinstance(items, dict):
        items = groups[group] = {}
    stored = items.get(item_key)
    stored = stored if isinstance(stored, dict) else {}
    patched = patch.apply(stored)
    if patched == stored:
        return False
    items[item_key] = patched
    return True


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class InventoryStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine = create_db_engine(db_url or get_settings().inventory_db_url)
        with storage_errors("inventory", "initialize"):
            metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(self, criteria: Optional[Mapping[str, Any]] = None, limit: int = 20, skip: int = 0) -> SearchResult:
        """Return one page of documents matching every criterion, plus the total match count.

        Each criterion is a case-insensitive substring match. Results are
        ordered by hostname, then id, so pagination is stable.
        """
        condition = _build_filter(criteria or {})
        stmt = (
            _documents.select()
            .order_by(_documents.c.hostname, _documents.c.id)
            .limit(max(1, limit))
            .offset(max(0, skip))
        )
        count_stmt = select(func.count()).select_from(_documents)
        if condition is not None:
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)
        with storage_errors("inventory", "search"), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar_one()
        return SearchResult(items=[_row_to_document(r) for r in rows], total=int(total))

    def count(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        condition = _build_filter(criteria or {})
        stmt = select(func.count()).select_from(_documents)
        if condition is not None:
            stmt = stmt.where(condition)
        with storage_errors("inventory", "count"), self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def find_by_id(self, document_id: str) -> Optional[InventoryDocument]:
        """Fetch a single document by ID. Returns None if not found."""
        with storage_errors("inventory", "find"), self.engine.connect() as conn:
            row = conn.execute(_documents.select().where(_documents.c.id == document_id)).fetchone()
        return _row_to_document(row) if row is not None else None

    def iterate_all(self, batch_size: int = 200) -> Iterator[InventoryDocument]:
        """Lazily yield every document, one search() page at a time.

        Restartable: each call starts a fresh cursor. Pages are read
        independently, so a document changed mid-scan shows up in whichever
        state its page saw. Iteration stops at the total reported by the
        most recent page, or at the first empty page.
        """
        batch_size = max(1, batch_size)
        skip = 0
        while True:
            page = self.search({}, limit=batch_size, skip=skip)
            if not page.items:
                return
            yield from page.items
            skip += batch_size
            if skip >= page.total:
                return

    def ping(self) -> bool:
        """Round-trip a trivial query. Raises StorageError when the database is unreachable."""
        with storage_errors("inventory", "ping"), self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_document(self, document: Union[InventoryDocument, Mapping[str, Any]], replace: bool = False) -> str:
        """Store a document and return its ID.

        Accepts an InventoryDocument or a raw mapping with optional "id",
        "descriptor" and "enforced" keys. A missing id is generated. With
        replace=True an existing document with the same id is overwritten;
        otherwise a duplicate id raises StorageError.
        """
        if isinstance(document, InventoryDocument):
            document_id = document.id
            body = document.body()
        else:
            document_id = str(document.get("id") or "")
            body = {
                "descriptor": copy.deepcopy(document.get("descriptor") or {}),
                "enforced": copy.deepcopy(document.get("enforced") or {}),
            }
        document_id = document_id.strip() or uuid.uuid4().hex
        descriptor = body["descriptor"] if isinstance(body["descriptor"], dict) else {}
        now = now_iso()
        with storage_errors("inventory", "insert"), self.engine.begin() as conn:
            if replace:
                conn.execute(delete(_documents).where(_documents.c.id == document_id))
            conn.execute(
                _documents.insert().values(
                    id=document_id,
                    body=body,
                    created_at=now,
                    updated_at=now,
                    **_search_columns_for(descriptor),
                )
            )
        return document_id

    def update_entry(self, document_id: str, group: str, item_key: str, patch: EntryPatch) -> bool:
        """Apply a patch to the entry at enforced.<group>.<item_key>.

        Optimistic compare-and-swap on the document revision: the body is
        read, patched, and written back only if the revision is still the one
        that was read. A lost race re-reads and re-applies the patch, so
        concurrent updates to different entries of one document never
        clobber each other on any backend (SQLite ignores FOR UPDATE). A
        missing entry is created from the patch.

        Returns True if the stored entry changed. Returns False without
        writing when the document does not exist or the patched entry is
        identical to the stored one. Raises StorageError when every attempt
        loses the race.
        """
        if patch.is_empty:
            return False
        for attempt in range(1, _MAX_UPDATE_ATTEMPTS + 1):
            with storage_errors("inventory", "update"), self.engine.begin() as conn:
                row = conn.execute(
                    select(_documents.c.body, _documents.c.revision)
                    .where(_documents.c.id == document_id)
                    .with_for_update()
                ).first()
                if row is None:
                    return False
                body = copy.deepcopy(row.body) if isinstance(row.body, dict) else {}
                if not _patch_body(body, group, item_key, patch):
                    return False
                result = conn.execute(
                    _documents.update()
                    .where(and_(_documents.c.id == document_id, _documents.c.revision == row.revision))
                    .values(body=body, revision=row.revision + 1, updated_at=now_iso())
                )
            if result.rowcount == 1:
                logger.debug("Updated %s enforced.%s.%s", document_id, group, item_key)
                return True
            logger.debug("Revision conflict on %s (attempt %d), retrying", document_id, attempt)
        logger.error("Gave up updating %s enforced.%s.%s after %d conflicts", document_id, group, item_key, attempt)
        raise StorageError(f"inventory update of {document_id} kept conflicting with concurrent writers")

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_document(row) -> InventoryDocument:
    return InventoryDocument.from_body(row.id, row.body)
