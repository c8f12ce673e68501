"""
Time utilities for the notification cascade

Provides timezone-aware datetime handling so that offsets computed at
scheduling time and clinic-local wall-clock anchors (such as the morning
call on the day of a consult) agree regardless of the server's timezone.
"""
from datetime import datetime, timezone
import logging

import pytz

logger = logging.getLogger("time-utils")

# Default timezone for the system (UTC)
SYSTEM_TIMEZONE = timezone.utc


def now_utc() -> datetime:
    """
    Get current time in UTC

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(SYSTEM_TIMEZONE)


def get_timezone(name: str):
    """Resolve a timezone name, falling back to UTC for unknown names"""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return pytz.utc


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    Parse ISO datetime string to UTC datetime

    Args:
        iso_string: ISO format datetime string (a trailing 'Z' is accepted)

    Returns:
        datetime object in UTC timezone

    Raises:
        ValueError: If the ISO string is invalid
    """
    try:
        if iso_string.endswith("Z"):
            iso_string = iso_string[:-1] + "+00:00"
        dt = datetime.fromisoformat(iso_string)

        # If naive datetime, assume UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
            logger.warning(f"Naive datetime {iso_string} assumed to be UTC")
        else:
            dt = dt.astimezone(SYSTEM_TIMEZONE)

        return dt
    except ValueError as e:
        logger.error(f"Failed to parse ISO datetime string '{iso_string}': {e}")
        raise


def to_utc(dt: datetime, assume_timezone: str = 'UTC') -> datetime:
    """
    Convert datetime to UTC

    Args:
        dt: Datetime to convert
        assume_timezone: Timezone to assume if datetime is naive

    Returns:
        datetime object in UTC timezone
    """
    if dt.tzinfo is None:
        dt = get_timezone(assume_timezone).localize(dt)

    return dt.astimezone(SYSTEM_TIMEZONE)


def to_clinic_timezone(dt: datetime, clinic_timezone: str) -> datetime:
    """Convert a datetime to the clinic's local timezone"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(get_timezone(clinic_timezone))


def local_time_on_date(dt: datetime, hour: int, clinic_timezone: str, minute: int = 0) -> datetime:
    """
    Wall-clock time on the same local calendar date as ``dt``

    Args:
        dt: Reference datetime (any timezone)
        hour: Local hour of day
        clinic_timezone: Timezone whose calendar date and clock are used
        minute: Local minute

    Returns:
        The local ``hour:minute`` on that date, expressed in UTC
    """
    tz = get_timezone(clinic_timezone)
    local = to_clinic_timezone(dt, clinic_timezone)
    wall_clock = datetime(local.year, local.month, local.day, hour, minute)
    return tz.localize(wall_clock).astimezone(SYSTEM_TIMEZONE)


def format_consult_date(dt: datetime, clinic_timezone: str) -> str:
    """Format as e.g. 'Tuesday, March 4'"""
    local = to_clinic_timezone(dt, clinic_timezone)
    return f"{local.strftime('%A, %B')} {local.day}"


def format_consult_time(dt: datetime, clinic_timezone: str) -> str:
    """Format as e.g. '2:00 PM'"""
    local = to_clinic_timezone(dt, clinic_timezone)
    hour = local.hour % 12 or 12
    return f"{hour}:{local.strftime('%M %p')}"
