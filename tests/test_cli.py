"""
tests/test_cli.py -- Tests for the operator CLI in main.py.

Each test points both databases at a temporary SQLite file through the
ETRACKER_* environment variables and clears the settings cache so main()
picks them up.
"""

from __future__ import annotations

import json

import pytest

import main
from core.config import get_settings
from core.errors import StorageError
from core.models import AuditRecord
from inventory.audit import AuditTrail
from inventory.store import InventoryStore
from tests.conftest import make_document


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'etracker.db'}"
    monkeypatch.setenv("ETRACKER_INVENTORY_DB_URL", url)
    monkeypatch.setenv("ETRACKER_AUDIT_DB_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()


def test_test_connection(db_url, capsys) -> None:
    assert main.main(["test-connection"]) == 0
    assert "Connection OK" in capsys.readouterr().out


def test_test_connection_failure_closes_engines(db_url, monkeypatch, capsys) -> None:
    closed: list[str] = []
    original_store_close = InventoryStore.close
    original_audit_close = AuditTrail.close

    def unreachable(self) -> bool:
        raise StorageError("audit ping failed") from OSError("connection refused")

    def close_store(self) -> None:
        closed.append("inventory")
        original_store_close(self)

    def close_audit(self) -> None:
        closed.append("audit")
        original_audit_close(self)

    monkeypatch.setattr(AuditTrail, "ping", unreachable)
    monkeypatch.setattr(InventoryStore, "close", close_store)
    monkeypatch.setattr(AuditTrail, "close", close_audit)

    assert main.main(["test-connection"]) == 1
    assert "Connection failed: audit ping failed (connection refused)" in capsys.readouterr().out
    assert sorted(closed) == ["audit", "inventory"]


def test_import_then_report_json(db_url, tmp_path, capsys) -> None:
    documents = [
        make_document("d1", "web-01", enforced={"CIS": {"1.1.1": {"enforced": False}}}),
        make_document("d2", "web-02"),
    ]
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps(documents), encoding="utf-8")

    assert main.main(["import", str(path)]) == 0
    assert "Imported 2 document(s), 0 failed." in capsys.readouterr().out

    store = InventoryStore(db_url)
    assert store.count() == 2
    store.close()

    assert main.main(["report", "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert [row["document_id"] for row in report["unenforced"]] == ["d1"]


def test_import_duplicate_without_replace_fails(db_url, tmp_path, capsys) -> None:
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps({"documents": [make_document("d1", "web-01")]}), encoding="utf-8")
    assert main.main(["import", str(path)]) == 0
    assert main.main(["import", str(path)]) == 1
    assert main.main(["import", str(path), "--replace"]) == 0


def test_import_rejects_non_array(db_url, tmp_path) -> None:
    path = tmp_path / "inventory.json"
    path.write_text('{"hostname": "web-01"}', encoding="utf-8")
    assert main.main(["import", str(path)]) == 1


def test_import_missing_file(db_url, tmp_path) -> None:
    assert main.main(["import", str(tmp_path / "missing.json")]) == 1


def test_report_text(db_url, capsys) -> None:
    assert main.main(["report", "--expiring-window", "30"]) == 0
    out = capsys.readouterr().out
    assert "Active exceptions: 0" in out
    assert "Expiring within 30 days" in out


def test_report_rejects_zero_window(db_url) -> None:
    with pytest.raises(SystemExit):
        main.main(["report", "--expiring-window", "0"])


def test_history(db_url, capsys) -> None:
    audit = AuditTrail(db_url)
    audit.append(
        AuditRecord(
            document_id="d1",
            item_type="CIS",
            item_key="1.1.1",
            previous_state={},
            new_state={"enforced": False},
            reason="vendor patch pending",
            actor_id="42",
            actor_name="Alice Admin",
        )
    )
    audit.close()

    assert main.main(["history", "d1"]) == 0
    out = capsys.readouterr().out
    assert "CIS/1.1.1" in out
    assert "Alice Admin" in out
    assert "vendor patch pending" in out

    assert main.main(["history", "nope"]) == 0
    assert "No audit history." in capsys.readouterr().out
