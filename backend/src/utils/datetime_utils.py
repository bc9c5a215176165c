"""
Datetime utilities for consistent timezone handling across the application.

All persisted timestamps are timezone-aware UTC. Availability windows are
wall-clock times interpreted in the configured local timezone (APP_TIMEZONE).
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from core.config import APP_TIMEZONE

logger = logging.getLogger(__name__)


def _resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


LOCAL_TZ = _resolve_timezone(APP_TIMEZONE)


def utc_now() -> datetime:
    """Get the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Get the current datetime in the application's local timezone."""
    return datetime.now(LOCAL_TZ)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware UTC.

    Naive datetimes are assumed to already be UTC (that is how they are
    stored), aware datetimes are converted.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware UTC datetime, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_local(dt: Optional[datetime], tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in the local timezone.

    Naive datetimes are assumed to be local wall-clock time.

    Args:
        dt: Datetime to normalize
        tz: Timezone to use instead of the configured local timezone

    Returns:
        Timezone-aware local datetime, or None if input is None
    """
    if dt is None:
        return None

    target = tz or LOCAL_TZ
    if dt.tzinfo is None:
        return dt.replace(tzinfo=target)
    return dt.astimezone(target)


def format_datetime(dt: datetime) -> str:
    """
    Format datetime for user-facing display in the local timezone.

    Formats datetime as: "Wed 12/25 1:30 PM"

    Used for all notification messages so dates read the same everywhere.

    Args:
        dt: Datetime to format (naive values are treated as UTC)

    Returns:
        Formatted datetime string
    """
    local_datetime = ensure_local(ensure_utc(dt))
    if local_datetime is None:
        raise ValueError("Cannot format None datetime")

    hour = local_datetime.hour
    hour_12 = hour % 12 or 12
    period = "AM" if hour < 12 else "PM"
    return (
        f"{local_datetime.strftime('%a %m/%d')} "
        f"{hour_12}:{local_datetime.minute:02d} {period}"
    )


def parse_datetime_string(dt_str: str) -> datetime:
    """
    Parse an ISO format datetime string into an aware UTC datetime.

    Handles:
    - ISO format with offset (e.g., "2024-01-01T09:00:00+08:00")
    - ISO format with Z (e.g., "2024-01-01T01:00:00Z")
    - ISO format without offset (interpreted as local wall-clock time)

    Raises:
        ValueError: If the string is not a valid ISO datetime
    """
    normalized = dt_str.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=LOCAL_TZ)
    return parsed.astimezone(timezone.utc)
