"""
Time utilities.

All timestamps are UTC. SQLite hands back naive datetimes, so anything
read from the database goes through ``ensure_utc`` before being compared
with the service clock.
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    return None if dt is None else as_utc(dt)


def format_iso8601(dt: datetime | None) -> str | None:
    """
    Format a datetime as ISO 8601 string.

    Args:
        dt: The datetime to format

    Returns:
        ISO 8601 formatted string (e.g., "2024-01-15T10:30:00Z"), or None
    """
    if dt is None:
        return None
    return as_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_iso8601(value: str | None) -> datetime | None:
    """Parse a timestamp written by ``datetime.isoformat`` back into aware UTC."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from ``start`` to ``end``."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 86400
