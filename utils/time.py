"""Time utilities."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    Some database backends (SQLite) hand timestamps back without tzinfo even
    though every value this app writes is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
