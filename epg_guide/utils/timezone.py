"""
Date and Time utilities

This module handles XMLTV timestamp normalization and ISO8601 parsing.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timedelta, timezone
import logging
import re

logger = logging.getLogger(__name__)

_XMLTV_TIMESTAMP = re.compile(
    r"^(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2}) ([+-])(\d{2})(\d{2})$"
)


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


def normalize_xmltv_timestamp(value: str | None) -> str | None:
    """
    Convert XMLTV time format to a canonical UTC timestamp

    Args:
        value: XMLTV time like '20080715003000 -0600'

    Returns:
        '2008-07-15T06:30:00.000Z' for a well-formed value, None for an empty
        value, and the input unchanged when it does not match the XMLTV format
    """
    if not value:
        return None

    match = _XMLTV_TIMESTAMP.match(value)
    if not match:
        return value

    year, month, day, hour, minute, second, sign, tz_hours, tz_mins = match.groups()
    offset = timedelta(hours=int(tz_hours), minutes=int(tz_mins))
    if sign == "-":
        offset = -offset

    try:
        local = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            tzinfo=timezone(offset),
        )
        return format_canonical_timestamp(local)
    except (ValueError, OverflowError):
        logger.debug("Impossible calendar value in XMLTV timestamp: %s", value)
        return value


def format_canonical_timestamp(dt: datetime) -> str:
    """Format an aware datetime as UTC with millisecond precision and a 'Z' suffix"""
    dt_utc = dt.astimezone(timezone.utc)
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt_utc.microsecond // 1000:03d}Z"


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'

    Args:
        date_str: ISO8601 datetime string

    Returns:
        Normalized string with explicit timezone offset
    """
    return date_str[:-1] + '+00:00' if date_str.endswith('Z') else date_str


def parse_iso8601_to_utc(date_str: str) -> datetime:
    """
    Parse ISO8601 date string and convert to UTC datetime

    This is the single source of truth for parsing query timestamps.

    Args:
        date_str: ISO8601 datetime string (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+01:00')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date string format is invalid
    """
    try:
        normalized = _normalize_iso8601_string(date_str.strip())
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def parse_canonical_timestamp(value: str | None) -> datetime | None:
    """Parse a normalized programme timestamp, returning None if it is absent or unparseable"""
    if not value:
        return None
    try:
        return parse_iso8601_to_utc(value)
    except DateFormatError:
        return None
