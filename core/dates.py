"""
core/dates.py -- UTC timestamp helpers shared by the engine and the reports.

All timestamps written by ETracker are UTC, second precision, with a literal
"Z" suffix (e.g. 2025-01-15T23:59:59Z). Reading is lenient: any ISO 8601
string datetime.fromisoformat() accepts is parsed, a trailing "Z" is
understood, and naive values are treated as UTC.

Parsing never raises. Unparsable input returns None and callers fall back to
their next rule (see core/engine.py and core/reports.py).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Length of a date-only value ("YYYY-MM-DD").
_DATE_ONLY_LENGTH = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Render an aware or naive (assumed UTC) datetime in the stored format."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def now_iso() -> str:
    return format_iso(utcnow())


def parse_iso(value: object) -> Optional[datetime]:
    """Parse an ISO 8601 string into an aware UTC datetime, or return None."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_expiration(value: object) -> Optional[str]:
    """Normalize a requested expiration to the stored format.

    A date-only value means the end of that day in UTC, so "2025-01-15"
    becomes "2025-01-15T23:59:59Z". Returns None for missing, blank or
    unparsable input.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) == _DATE_ONLY_LENGTH:
        text = f"{text}T23:59:59+00:00"
    dt = parse_iso(text)
    return format_iso(dt) if dt is not None else None


def days_from(now: datetime, days: int) -> str:
    return format_iso(now + timedelta(days=days))
