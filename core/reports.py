"""
core/reports.py -- Exception and enforcement reports compiled from a full scan.

compile() walks every inventory document and derives three views:

  expiring    active exceptions whose expires_at falls on or before
              now + window (already-overdue ones included), soonest first
  summary     active-exception totals: overall, per group, and bucketed into
              overdue / due_soon / due_later by expires_at
  unenforced  every entry with enforced == False, in scan order, capped at
              unenforced_limit (0 = no cap)

Stateless and read-only: nothing is cached, every call re-reads the store.
Uses Python date arithmetic (not SQL date functions) for portability and
testability. The scan is paged (see InventoryStore.iterate_all), so memory
holds one page of documents plus the report rows.

An exception with a missing or unparsable expires_at still counts as active
but lands in none of the three expiry buckets and never appears in expiring.
"""

import logging
import math
from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from core.dates import parse_iso, utcnow
from core.models import InventoryDocument

logger = logging.getLogger("etracker.reports")

DEFAULT_EXPIRING_WINDOW_DAYS = 45
DEFAULT_UNENFORCED_LIMIT = 150
DEFAULT_BATCH_SIZE = 200


class DocumentSource(Protocol):
    def iterate_all(self, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[InventoryDocument]: ...


@dataclass
class ExpiringRow:
    document_id: str
    hostname: str
    application: str
    group: str
    item_key: str
    enforced_key: Optional[str]
    reason: str
    approver: str
    updated_at: Optional[str]
    expires_at: str
    days_until: int  # floor of days from now; negative once overdue


@dataclass
class UnenforcedRow:
    document_id: str
    hostname: str
    application: str
    group: str
    item_key: str
    exception_active: bool
    exception_expires_at: Optional[str]
    reason: str
    enforced_key: Optional[str]


@dataclass
class ReportSummary:
    total_active: int = 0
    by_group: dict[str, int] = field(default_factory=dict)  # count descending
    overdue: int = 0
    due_soon: int = 0
    due_later: int = 0


@dataclass
class Report:
    expiring: list[ExpiringRow] = field(default_factory=list)
    summary: ReportSummary = field(default_factory=ReportSummary)
    unenforced: list[UnenforcedRow] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReportCompiler:
    def __init__(self, source: DocumentSource, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._source = source
        self._batch_size = max(1, batch_size)

    def compile(
        self,
        expiring_window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS,
        unenforced_limit: int = DEFAULT_UNENFORCED_LIMIT,
        now: Optional[datetime] = None,
    ) -> Report:
        """Scan every document and build the report.

        Args:
            expiring_window_days: "approaching expiration" horizon, clamped to >= 1.
            unenforced_limit: maximum unenforced rows; 0 or negative means all.
            now: reference time; naive values are taken as UTC. Defaults to the
                current time.
        """
        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        else:
            now = now.astimezone(timezone.utc)
        threshold = now + timedelta(days=max(1, expiring_window_days))

        report = Report()
        summary = report.summary
        by_group: dict[str, int] = {}
        # Parsed expiry per expiring row, kept alongside for sorting.
        expiring: list[tuple[Optional[datetime], ExpiringRow]] = []
        documents = 0

        for document in self._source.iterate_all(self._batch_size):
            documents += 1
            for group, item_key, entry in document.iter_entries():
                exception = entry.exception
                expires_at_iso = exception.expires_at if exception is not None else None
                reason = (exception.reason if exception is not None else None) or ""

                if entry.has_active_exception:
                    summary.total_active += 1
                    by_group[group] = by_group.get(group, 0) + 1

                    expires_at = parse_iso(expires_at_iso)
                    if expires_at is not None:
                        if expires_at < now:
                            summary.overdue += 1
                        elif expires_at <= threshold:
                            summary.due_soon += 1
                        else:
                            summary.due_later += 1

                    if expires_at is not None and expires_at <= threshold:
                        approver = exception.approver.name if exception.approver is not None else ""
                        expiring.append(
                            (
                                expires_at,
                                ExpiringRow(
                                    document_id=document.id,
                                    hostname=document.hostname,
                                    application=document.application,
                                    group=group,
                                    item_key=item_key,
                                    enforced_key=entry.enforced_key,
                                    reason=reason,
                                    approver=approver,
                                    updated_at=exception.updated_at,
                                    expires_at=expires_at_iso,
                                    days_until=math.floor((expires_at - now).total_seconds() / 86400),
                                ),
                            )
                        )

                if not entry.is_enforced:
                    report.unenforced.append(
                        UnenforcedRow(
                            document_id=document.id,
                            hostname=document.hostname,
                            application=document.application,
                            group=group,
                            item_key=item_key,
                            exception_active=entry.has_active_exception,
                            exception_expires_at=expires_at_iso,
                            reason=reason,
                            enforced_key=entry.enforced_key,
                        )
                    )

        expiring.sort(key=_expiring_sort_key)
        report.expiring = [row for _, row in expiring]

        # sorted() is stable, so equal counts keep first-seen order.
        summary.by_group = dict(sorted(by_group.items(), key=lambda kv: kv[1], reverse=True))

        if unenforced_limit > 0 and len(report.unenforced) > unenforced_limit:
            report.unenforced = report.unenforced[:unenforced_limit]

        logger.info(
            "Compiled report over %d documents: %d active, %d expiring, %d unenforced",
            documents,
            summary.total_active,
            len(report.expiring),
            len(report.unenforced),
        )
        return report


def _expiring_sort_key(item: tuple[Optional[datetime], ExpiringRow]) -> tuple:
    """Soonest first, unparsable timestamps last, ties by hostname."""
    expires_at, row = item
    if expires_at is None:
        return (1, 0.0, row.hostname)
    return (0, expires_at.timestamp(), row.hostname)
