"""
Timezone and datetime utilities.

Provides utilities for handling timezone-aware datetime operations.
"""

from datetime import datetime

import pytz
from dateutil import parser


def make_timezone_aware(
    dt: datetime, timezone_str: str = "UTC", assume_local: bool = False
) -> datetime:
    """
    Make a datetime object timezone-aware.

    Args:
        dt: Datetime object (may be naive or aware).
        timezone_str: Timezone string (e.g., "America/Santiago").
        assume_local: If True and dt is naive, assume it's in timezone_str.

    Returns:
        Timezone-aware datetime object.
    """
    tz = pytz.timezone(timezone_str)

    if dt.tzinfo is None:
        if assume_local:
            return tz.localize(dt)
        else:
            return pytz.utc.localize(dt).astimezone(tz)
    else:
        return dt.astimezone(tz)


def parse_datetime(
    date_str: str, time_str: str | None = None, timezone_str: str = "UTC"
) -> datetime:
    """
    Parse date and optional time strings into timezone-aware datetime.

    Args:
        date_str: Date string (various formats supported).
        time_str: Optional time string.
        timezone_str: Timezone to assign when the parsed value is naive.

    Returns:
        Timezone-aware datetime object.
    """
    if time_str:
        combined = f"{date_str} {time_str}"
    else:
        combined = date_str

    dt = parser.parse(combined)

    return make_timezone_aware(dt, timezone_str, assume_local=True)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to UTC, treating naive values as UTC.

    Stored documents mix naive and aware timestamps; comparisons need one
    representation.

    Args:
        dt: Datetime object (may be naive or aware).

    Returns:
        Timezone-aware UTC datetime.
    """
    return make_timezone_aware(dt, "UTC", assume_local=True)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(pytz.utc)
