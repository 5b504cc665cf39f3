"""
UTC helpers. Some drivers (SQLite) hand back naive datetimes for
timezone-aware columns; everything stored here is UTC.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_seconds(value: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole seconds elapsed since `value` (0 when value is None)."""
    if value is None:
        return 0
    now = now or utc_now()
    return max(int((now - as_utc(value)).total_seconds()), 0)
