"""
Timezone helpers.

SQLite drops tzinfo on DateTime(timezone=True) columns, so values read back
may be naive. All engine timestamps are UTC.
"""

from datetime import datetime, UTC
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def start_of_day(value: datetime) -> datetime:
    """Midnight (UTC) of the day containing value"""
    return ensure_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)
