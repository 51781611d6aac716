"""
Timezone-aware datetime utilities.

All datetime operations should use these helpers to ensure consistent
timezone handling across the codebase.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional, Union


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def parse_db_timestamp(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse timestamp from database, ensuring timezone-aware UTC.

    Handles:
    - ISO format strings with Z suffix
    - ISO format strings with +00:00 offset
    - Naive datetimes (assumed UTC)
    - Already timezone-aware datetimes

    Returns:
        Timezone-aware datetime in UTC, or None if input is None/empty
    """
    if value is None:
        return None

    if isinstance(value, str):
        if not value:
            return None
        # Handle Z suffix (common in PostgreSQL/Supabase)
        value = value.replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    elif isinstance(value, datetime):
        dt = value
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for a timestamptz column (None stays None)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def expiry_from_now(days: int) -> datetime:
    """Fixed expiry window starting now."""
    return utc_now() + timedelta(days=days)


def is_past(timestamp: Optional[Union[str, datetime]]) -> bool:
    """
    Check whether an absolute expiry timestamp lies in the past.

    A missing or unparsable timestamp is treated as not expired; expiry
    columns are always populated when a token is issued.
    """
    dt = parse_db_timestamp(timestamp)
    if dt is None:
        return False
    return dt < utc_now()
