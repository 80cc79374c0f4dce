"""
Time helpers for job timestamps and cache expiry.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_time(ts: Optional[datetime]) -> Optional[str]:
    """
    Format a timestamp as ISO-8601 for storage.

    Naive datetimes are assumed to already be UTC.
    """
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def seconds_since(ts: datetime, now: Optional[datetime] = None) -> float:
    """Elapsed seconds between ts and now (defaults to wall clock)."""
    if now is None:
        now = utc_now()
    return (now - ts).total_seconds()
