"""
Common utility functions for the clearance application.

This module provides reusable helper functions for:
- Date/time handling (ISO-8601 with UTC, naive values read back from SQLite)
- The school's local calendar date
- Parsing comma-separated name lists
- Stripping markup from free-text input
"""

from datetime import datetime, timezone

import bleach
import pytz


def utc_now():
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt):
    """Return an aware UTC datetime; naive values are assumed to be UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_iso(dt):
    """Return a UTC ISO-8601 string (with trailing Z) for a datetime or None."""
    if not dt:
        return None
    return as_utc(dt).isoformat().replace("+00:00", "Z")


def school_today(tz_name, now=None):
    """Return today's date in the school's timezone."""
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        tz = pytz.utc
    return as_utc(now or utc_now()).astimezone(tz).date()


def parse_name_list(value):
    """
    Split a list-ish value into clean strings.

    Accepts a list (from JSON) or a comma-separated string (from a form).
    """
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        parts = value
    else:
        parts = str(value).split(',')
    return [str(part).strip() for part in parts if str(part).strip()]


def sanitize_text(value):
    """Strip HTML tags from free text and trim surrounding whitespace."""
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return bleach.clean(value, tags=[], attributes={}, strip=True).strip()
