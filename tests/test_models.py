"""Unit tests for core/models.py and core/dates.py.

Covers:
- from_dict() tolerance for malformed stored data
- to_dict() drops absent fields and keeps unknown keys
- enforced_key_choices() ordering and labels
- Timestamp parsing and expiration normalization
"""

from datetime import datetime, timezone

import pytest

from core.dates import format_iso, parse_expiration, parse_iso
from core.models import EnforcementEntry, ExceptionRecord, InventoryDocument


class TestEnforcementEntry:
    def test_non_mapping_yields_empty_entry(self) -> None:
        assert EnforcementEntry.from_dict("garbage") == EnforcementEntry()

    def test_missing_enforced_reads_as_unenforced(self) -> None:
        entry = EnforcementEntry.from_dict({})
        assert entry.enforced is None
        assert entry.is_enforced is False
        assert EnforcementEntry.from_dict({"enforced": True}).is_enforced is True

    def test_round_trip_keeps_unknown_keys(self) -> None:
        raw = {"enforced": False, "source": "scanner", "platforms": ["linux"]}
        assert EnforcementEntry.from_dict(raw).to_dict() == raw

    def test_exception_to_dict_is_compact(self) -> None:
        record = ExceptionRecord(active=True, reason="", expires_at="2025-01-15T23:59:59Z")
        assert record.to_dict() == {"active": True, "expires_at": "2025-01-15T23:59:59Z"}

    def test_malformed_exception_ignored(self) -> None:
        assert EnforcementEntry.from_dict({"exception": "yes"}).exception is None

    def test_enforced_key_choices(self) -> None:
        entry = EnforcementEntry(
            enforced_key="custom:thing",
            platforms=["linux"],
            hardware=["x86"],
            environment=["prod"],
        )
        choices = entry.enforced_key_choices()
        assert list(choices) == ["", "platforms:linux", "hardware:x86", "environment:prod", "custom:thing"]
        assert choices["hardware:x86"] == "Hardware: x86"
        assert choices["custom:thing"] == "Existing: custom:thing"

    def test_current_key_among_tags_not_duplicated(self) -> None:
        entry = EnforcementEntry(enforced_key="platforms:linux", platforms=["linux"])
        assert list(entry.enforced_key_choices()) == ["", "platforms:linux"]


class TestInventoryDocument:
    def test_from_body_skips_malformed_groups(self) -> None:
        doc = InventoryDocument.from_body(
            "d1",
            {"descriptor": {"hostname": "web-01"}, "enforced": {"CIS": {"1": {"enforced": True}, "2": 5}, "Bad": []}},
        )
        assert list(doc.enforced) == ["CIS"]
        assert list(doc.enforced["CIS"]) == ["1"]

    def test_application_from_instance_name(self) -> None:
        doc = InventoryDocument(id="d1", descriptor={"instance": {"name": "Payroll"}})
        assert doc.application == "Payroll"
        assert InventoryDocument(id="d2").application == ""


class TestDates:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2025-01-15", "2025-01-15T23:59:59Z"),
            ("2025-01-15T08:30:00Z", "2025-01-15T08:30:00Z"),
            ("2025-01-15T08:30:00", "2025-01-15T08:30:00Z"),
            ("2025-01-15T08:30:00-05:00", "2025-01-15T13:30:00Z"),
            ("", None),
            ("   ", None),
            ("not a date", None),
            (None, None),
        ],
    )
    def test_parse_expiration(self, value, expected) -> None:
        assert parse_expiration(value) == expected

    def test_parse_iso_never_raises(self) -> None:
        assert parse_iso(12345) is None
        assert parse_iso("2025-13-45") is None

    def test_format_iso_assumes_utc_for_naive(self) -> None:
        assert format_iso(datetime(2025, 1, 1, 9, 0, 0)) == "2025-01-01T09:00:00Z"
        assert format_iso(datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc)) == "2025-01-01T09:00:00Z"
