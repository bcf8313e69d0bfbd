"""UTC time helpers shared by services and tests."""

from datetime import date, datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def normalize_now(now: Optional[Any] = None) -> datetime:
    """Return `now` as an aware UTC datetime, defaulting to the current time."""
    if now is None:
        return utc_now()
    return ensure_utc(now)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_start(now: Optional[datetime] = None) -> date:
    """First day of the calendar month containing `now` (UTC)."""
    current = normalize_now(now)
    return date(current.year, current.month, 1)
