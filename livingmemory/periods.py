"""Calendar-month helpers for snapshots and temporal queries."""

import re
from datetime import datetime

MONTH_NAMES = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO 8601 timestamp, accepting a trailing "Z" on every Python."""
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Not an ISO 8601 timestamp: {text!r}") from None


def to_iso(ts: datetime | str | None) -> str | None:
    """
    Normalize a timestamp to a naive local ISO string (sortable as text).

    Strings are parsed, so "2025-09-16T12:00:00+00:00", "...Z" and a naive
    "2025-09-16T14:00:00" all end up in the same format. Raises ValueError
    for anything that is not an ISO 8601 timestamp.
    """
    if ts is None:
        return None
    if isinstance(ts, str):
        ts = parse_timestamp(ts)
    if ts.tzinfo is not None:
        ts = ts.astimezone().replace(tzinfo=None)
    return ts.isoformat()


def format_period(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    """Move (year, month) by delta months."""
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def previous_month(now: datetime) -> tuple[int, int]:
    """The most recently closed calendar month."""
    return shift_month(now.year, now.month, -1)


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """ISO [start, end) for a calendar month."""
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    next_year, next_month = shift_month(year, month, 1)
    start = datetime(year, month, 1).isoformat()
    end = datetime(next_year, next_month, 1).isoformat()
    return start, end


def is_current_month(year: int, month: int, now: datetime) -> bool:
    return year == now.year and month == now.month


def parse_month(text: str, today: datetime | None = None) -> tuple[int, int] | None:
    """
    Parse "2024-11", "2024/11", "november" or "nov" into (year, month).

    Bare month names resolve to the current year, or the previous year when
    the month has not happened yet this year.
    """
    today = today or datetime.now()
    value = text.strip().lower()

    iso = re.match(r"^(\d{4})[-/](\d{1,2})$", value)
    if iso:
        year, month = int(iso.group(1)), int(iso.group(2))
        return (year, month) if 1 <= month <= 12 else None

    month = MONTH_NAMES.get(value)
    if month:
        year = today.year - 1 if month > today.month else today.year
        return year, month

    return None
