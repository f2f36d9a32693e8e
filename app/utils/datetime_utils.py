from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    All DateTime columns store naive UTC values.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.replace(tzinfo=None)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Naive UTC cutoff ``days`` before ``now``."""
    return (now or naive_utc_now()) - timedelta(days=days)


def parse_clock_time(value: str) -> time:
    """Parse an ``HH:MM`` timetable string into a ``time``."""
    hours, minutes = value.strip().split(":", 1)
    return time(hour=int(hours), minute=int(minutes))


def sunday_based_weekday(day: date) -> int:
    """Weekday index where 0 is Sunday and 6 is Saturday."""
    return (day.weekday() + 1) % 7
