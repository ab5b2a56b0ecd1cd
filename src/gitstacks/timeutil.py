"""Time helpers for the CLI.

Listing timestamps are milliseconds since the epoch. These helpers turn them
into datetimes, parse human-friendly --since values and render
"3 days ago" style strings.

Supported references:
- ISO format: "2025-01-15", "2025-01-15T14:30:00"
- Relative: "7 days ago", "2 weeks ago", "1 month ago"
- Named: "yesterday", "last week", "last month"
"""

import re
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
SECONDS_PER_MONTH = 2592000  # 30 days
SECONDS_PER_YEAR = 31536000  # 365 days


def from_ms(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def to_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive means UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


# Offsets back from now for named references
_NAMED_OFFSETS = {
    "last week": relativedelta(weeks=1),
    "last month": relativedelta(months=1),
    "last year": relativedelta(years=1),
}

_AGO = re.compile(r"(\d+)\s*(second|minute|hour|day|week|month|year)s?\s*ago")


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse a --since value into an aware UTC datetime.

    Raises:
        ValueError: If the reference cannot be parsed
    """
    if now is None:
        now = datetime.now(timezone.utc)

    ref = ref.strip().lower()

    if ref == "today":
        return _midnight(now)
    if ref == "yesterday":
        return _midnight(now - timedelta(days=1))
    if ref in _NAMED_OFFSETS:
        return now - _NAMED_OFFSETS[ref]

    if match := _AGO.fullmatch(ref):
        amount, unit = int(match.group(1)), match.group(2)
        # relativedelta keeps month arithmetic calendar-aware (Mar 31 -> Feb 28)
        return now - relativedelta(**{f"{unit}s": amount})

    try:
        parsed = dateparser.parse(ref)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Format a datetime as a human-readable relative string.

    Args:
        dt: The datetime to format
        now: Reference point (default: utcnow)

    Returns:
        Human-readable string like "2 days ago", "3 weeks ago"
    """
    if now is None:
        now = datetime.now(timezone.utc)

    seconds = int((now - dt).total_seconds())
    if seconds < 0:
        return "in the future"
    if seconds < SECONDS_PER_MINUTE:
        return f"{seconds} seconds ago"

    for size, unit in (
        (SECONDS_PER_YEAR, "year"),
        (SECONDS_PER_MONTH, "month"),
        (SECONDS_PER_WEEK, "week"),
        (SECONDS_PER_DAY, "day"),
        (SECONDS_PER_HOUR, "hour"),
        (SECONDS_PER_MINUTE, "minute"),
    ):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return f"{seconds} seconds ago"
