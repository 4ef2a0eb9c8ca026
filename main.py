#!/usr/bin/env python3
"""
ETracker -- Security enforcement exceptions for server inventory.

Operator commands for the inventory and audit databases configured through
ETRACKER_* environment variables (see core/config.py).

Usage:
  python main.py test-connection
  python main.py import inventory.json
  python main.py import inventory.json --replace
  python main.py report
  python main.py report --expiring-window 30 --unenforced-limit 50
  python main.py report --json
  python main.py history 64f1c2e9a1b2 --item-key 1.1.1
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from core.config import Settings, get_settings
from core.errors import StorageError
from core.reports import Report, ReportCompiler
from inventory.audit import AuditTrail
from inventory.store import InventoryStore

logger = logging.getLogger("etracker.cli")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_test_connection(args: argparse.Namespace, settings: Settings) -> int:
    """Ping both databases. Non-zero exit when either is unreachable."""
    store: Optional[InventoryStore] = None
    audit: Optional[AuditTrail] = None
    try:
        store = InventoryStore(settings.inventory_db_url)
        audit = AuditTrail(settings.audit_db_url)
        store.ping()
        audit.ping()
        documents = store.count()
    except StorageError as exc:
        print(f"  [!] Connection failed: {exc} ({exc.__cause__})")
        return 1
    finally:
        for opened in (store, audit):
            if opened is not None:
                opened.close()
    print(f"  Connection OK ({documents} inventory documents).")
    return 0


def _load_documents(path: str) -> Optional[list[dict[str, Any]]]:
    """Read a JSON array of documents, or an object with a "documents" array."""
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"  [!] Could not read '{path}': {e}")
        return None
    if isinstance(data, dict):
        data = data.get("documents")
    if not isinstance(data, list):
        print(f"  [!] '{path}' must contain a JSON array of documents.")
        return None
    return [d for d in data if isinstance(d, dict)]


def cmd_import(args: argparse.Namespace, settings: Settings) -> int:
    documents = _load_documents(args.path)
    if documents is None:
        return 1
    store = InventoryStore(settings.inventory_db_url)
    imported = failed = 0
    try:
        for document in documents:
            try:
                store.insert_document(document, replace=args.replace)
                imported += 1
            except StorageError as exc:
                failed += 1
                print(f"  [!] Skipped {document.get('id') or '(no id)'}: {exc.__cause__ or exc}")
    finally:
        store.close()
    print(f"  Imported {imported} document(s), {failed} failed.")
    return 0 if failed == 0 else 1


def _print_report(report: Report, window: int, limit: int) -> None:
    summary = report.summary
    print("\nETracker -- Exception Report")
    print("-" * 40)
    print(f"  Active exceptions: {summary.total_active}")
    print(f"    overdue:   {summary.overdue}")
    print(f"    due soon:  {summary.due_soon}  (within {window} days)")
    print(f"    due later: {summary.due_later}")
    for group, count in summary.by_group.items():
        print(f"    {group}: {count}")

    print(f"\n  Expiring within {window} days ({len(report.expiring)})")
    for row in report.expiring:
        print(f"    {row.days_until:>5}d  {row.expires_at:<22} {row.hostname:<30} {row.group}/{row.item_key}")

    cap = f", capped at {limit}" if limit > 0 else ""
    print(f"\n  Unenforced controls ({len(report.unenforced)}{cap})")
    for row in report.unenforced:
        flag = "exception" if row.exception_active else "unenforced"
        print(f"    {row.hostname:<30} {row.group}/{row.item_key:<20} {flag}")
    print()


def cmd_report(args: argparse.Namespace, settings: Settings) -> int:
    window = args.expiring_window or settings.report_expiring_window_days
    limit = args.unenforced_limit if args.unenforced_limit is not None else settings.report_unenforced_limit
    store = InventoryStore(settings.inventory_db_url)
    try:
        report = ReportCompiler(store, batch_size=settings.report_batch_size).compile(
            expiring_window_days=window, unenforced_limit=limit
        )
    finally:
        store.close()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report, window, limit)
    return 0


def cmd_history(args: argparse.Namespace, settings: Settings) -> int:
    audit = AuditTrail(settings.audit_db_url)
    try:
        records = audit.history(args.document_id, item_key=args.item_key, limit=args.limit)
    finally:
        audit.close()
    if args.json:
        print(json.dumps([vars(r) for r in records], indent=2))
        return 0
    if not records:
        print("  No audit history.")
        return 0
    for r in records:
        print(f"  {r.created_at}  {r.item_type}/{r.item_key}  by {r.actor_name or r.actor_id}")
        if r.reason:
            print(f"      reason: {r.reason}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="etracker",
        description="Security enforcement exceptions for server inventory.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py test-connection
  python main.py import inventory.json
  python main.py report --expiring-window 30 --json > report.json
  python main.py history 64f1c2e9a1b2 --item-key 1.1.1
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("test-connection", help="Check that the inventory and audit databases are reachable")
    p.set_defaults(func=cmd_test_connection)

    p = sub.add_parser("import", help="Load inventory documents from a JSON file")
    p.add_argument("path", metavar="PATH", help="JSON array of documents (id, descriptor, enforced)")
    p.add_argument("--replace", action="store_true", help="Overwrite documents whose id already exists")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("report", help="Print expiring exceptions and unenforced controls")
    p.add_argument("--expiring-window", type=int, metavar="DAYS", help="Approaching-expiration window in days")
    p.add_argument("--unenforced-limit", type=int, metavar="N", help="Maximum unenforced rows (0 = all)")
    p.add_argument("--json", action="store_true", help="Output structured JSON")
    p.set_defaults(func=cmd_report)

    p = sub.add_parser("history", help="Show the audit trail for a document")
    p.add_argument("document_id", metavar="DOCUMENT_ID")
    p.add_argument("--item-key", metavar="KEY", help="Restrict to one control key")
    p.add_argument("--limit", type=int, default=50, metavar="N", help="Maximum records (default: 50)")
    p.add_argument("--json", action="store_true", help="Output structured JSON")
    p.set_defaults(func=cmd_history)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if args.command == "report" and args.expiring_window is not None and args.expiring_window < 1:
        parser.error("--expiring-window must be at least 1")

    try:
        return args.func(args, settings)
    except StorageError as exc:
        logger.error("Command %s failed: %s", args.command, exc.__cause__ or exc)
        print(f"  [!] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
