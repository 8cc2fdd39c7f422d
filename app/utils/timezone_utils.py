"""
Timezone Utilities

All instants are handled as timezone-aware UTC datetimes internally; naive values
coming from storage or the provider are assumed to be UTC.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo
from typing import Optional, Union

from app import config

DEFAULT_TIMEZONE = config.CALENDAR_TIMEZONE


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime (default clock for services)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Args:
        dt: Naive (assumed UTC) or aware datetime

    Returns:
        Timezone-aware UTC datetime
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (with 'Z' or offset) into aware UTC.

    Returns None for empty values.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize an instant as an ISO-8601 UTC string for storage and the provider."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def to_local(dt: datetime, timezone_str: str = DEFAULT_TIMEZONE) -> datetime:
    """Convert an instant to the practice's local time."""
    return ensure_utc(dt).astimezone(ZoneInfo(timezone_str))


def local_to_utc(local_dt: datetime, timezone_str: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Interpret a naive wall-clock datetime in the practice timezone and convert to UTC.
    """
    if local_dt.tzinfo is None:
        local_dt = local_dt.replace(tzinfo=ZoneInfo(timezone_str))
    return local_dt.astimezone(timezone.utc)
