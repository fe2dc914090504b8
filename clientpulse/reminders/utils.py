"""Shared time utilities for reminder modules."""

from datetime import datetime, timezone


def ensure_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z". Naive timestamps are assumed to be UTC.
    Raises ValueError if value is empty or not a valid ISO timestamp.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return ensure_utc(dt)


def isoformat(dt: datetime) -> str:
    """ISO-8601 string in UTC with a Z suffix (e.g. 2026-03-01T09:00:00Z)."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")
