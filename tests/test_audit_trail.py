"""Unit tests for inventory/audit.py -- the append-only audit trail.

Covers:
- append() assigns id and created_at, round-trips entry snapshots
- history() ordering (newest first), item filter, limit clamping
- history_for_document() spans every item of one document
"""

from datetime import datetime

import pytest

from core.models import AuditRecord
from inventory.audit import AuditTrail


def _record(item_key: str = "1.1.1", document_id: str = "doc-1", reason: str = "") -> AuditRecord:
    return AuditRecord(
        document_id=document_id,
        item_type="CIS",
        item_key=item_key,
        previous_state={"enforced": True},
        new_state={"enforced": False, "exception": {"active": True, "reason": reason}},
        reason=reason,
        actor_id="42",
        actor_name="Alice Admin",
        created_at="1999-01-01T00:00:00Z",  # ignored; the trail stamps its own
    )


@pytest.fixture
def audit():
    trail = AuditTrail("sqlite:///:memory:")
    yield trail
    trail.close()


class TestAppend:
    def test_append_returns_id_and_round_trips(self, audit) -> None:
        record_id = audit.append(_record(reason="vendor patch pending"))
        assert isinstance(record_id, int)

        stored = audit.history("doc-1")[0]
        assert stored.id == record_id
        assert stored.previous_state == {"enforced": True}
        assert stored.new_state["exception"]["reason"] == "vendor patch pending"
        assert stored.reason == "vendor patch pending"
        assert stored.actor_id == "42"
        assert stored.actor_name == "Alice Admin"

    def test_created_at_assigned_by_trail(self, audit) -> None:
        audit.append(_record())
        created_at = audit.history("doc-1")[0].created_at
        assert created_at is not None
        assert not created_at.startswith("1999")
        assert datetime.strptime(created_at, "%Y-%m-%dT%H:%M:%SZ")


class TestHistory:
    def test_newest_first(self, audit) -> None:
        for reason in ("first", "second", "third"):
            audit.append(_record(reason=reason))
        assert [r.reason for r in audit.history("doc-1")] == ["third", "second", "first"]

    def test_item_filter(self, audit) -> None:
        audit.append(_record("1.1.1"))
        audit.append(_record("1.1.2"))
        records = audit.history("doc-1", item_key="1.1.2")
        assert [r.item_key for r in records] == ["1.1.2"]

    def test_limit_and_clamp(self, audit) -> None:
        for _ in range(5):
            audit.append(_record())
        assert len(audit.history("doc-1", limit=2)) == 2
        assert len(audit.history("doc-1", limit=0)) == 1

    def test_other_documents_excluded(self, audit) -> None:
        audit.append(_record(document_id="doc-1"))
        audit.append(_record(document_id="doc-2"))
        assert [r.document_id for r in audit.history("doc-2")] == ["doc-2"]

    def test_history_for_document_spans_items(self, audit) -> None:
        audit.append(_record("1.1.1"))
        audit.append(_record("1.1.2"))
        assert {r.item_key for r in audit.history_for_document("doc-1")} == {"1.1.1", "1.1.2"}

    def test_unknown_document_has_no_history(self, audit) -> None:
        assert audit.history("nope") == []


def test_ping(audit) -> None:
    assert audit.ping() is True
