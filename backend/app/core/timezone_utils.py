"""
Timezone and calendar-period utilities.

All persisted timestamps are UTC. Wall-clock conversions use pytz so that
DST transitions are resolved with ``localize`` instead of naive offsets.
"""

import calendar
from datetime import date, datetime, timedelta
import re
from typing import Optional, Tuple

import pytz

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(pytz.UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on read).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def get_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Return a pytz timezone, falling back to UTC for unknown names."""
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def local_to_utc(naive_local: datetime, tz_name: str) -> datetime:
    """Interpret a naive wall-clock datetime in ``tz_name`` and convert to UTC."""
    tz = get_timezone(tz_name)
    return tz.localize(naive_local.replace(tzinfo=None)).astimezone(pytz.UTC)


def utc_to_local(dt: datetime, tz_name: str) -> datetime:
    return ensure_utc(dt).astimezone(get_timezone(tz_name))


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp (``Z`` suffix accepted) into aware UTC.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if not value or not isinstance(value, str):
        raise ValueError("Empty datetime value")
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(normalized))


def format_local_iso(dt: datetime) -> str:
    """Format a wall-clock datetime as ``YYYY-MM-DDTHH:MM:SS`` without offset."""
    return dt.replace(tzinfo=None).strftime("%Y-%m-%dT%H:%M:%S")


def end_of_week(day: date) -> date:
    """Sunday that closes the week containing ``day``."""
    return day + timedelta(days=6 - day.weekday())


def end_of_month(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def period_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_period(period: str) -> Tuple[int, int]:
    """
    Parse a ``YYYY-MM`` period.

    Raises:
        ValueError: If the period is malformed
    """
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise ValueError(f"Invalid period '{period}', expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in period '{period}'")
    return year, month


def period_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    """Return the half-open UTC range ``[start, end)`` covering one calendar month."""
    start = datetime(year, month, 1, tzinfo=pytz.UTC)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=pytz.UTC)
    else:
        end = datetime(year, month + 1, 1, tzinfo=pytz.UTC)
    return start, end


def previous_period(now: Optional[datetime] = None) -> str:
    """``YYYY-MM`` of the month before ``now`` (UTC)."""
    current = ensure_utc(now) if now else utc_now()
    first_of_month = current.date().replace(day=1)
    return period_key(first_of_month - timedelta(days=1))
