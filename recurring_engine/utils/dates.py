"""
Date helpers for schedule arithmetic.

All occurrence dates are date-only values computed in the owning user's
timezone, so an aware timestamp near midnight UTC lands on the user's local day.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta


DateLike = Union[date, datetime, str]

# Monday=0 .. Sunday=6, same as date.weekday()
SATURDAY = 5
SUNDAY = 6


def to_local_date(value: DateLike, timezone: Optional[str] = None) -> date:
    """
    Convert a date-like value to a date in the given timezone.

    Args:
        value: date, datetime (naive or aware) or ISO string
        timezone: IANA timezone name (e.g. "Pacific/Auckland"); None keeps the
            value's own wall-clock date

    Returns:
        Date-only value
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())

    if isinstance(value, datetime):
        if timezone and value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(timezone))
        return value.date()

    return value


def local_today(timezone: Optional[str] = None) -> date:
    """Return today's date in the given timezone."""
    if timezone:
        return datetime.now(ZoneInfo(timezone)).date()
    return date.today()


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping day to the month length."""
    return date(year, month, min(day, days_in_month(year, month)))


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, days_in_month(year, month))


def first_weekday_of_month(year: int, month: int) -> date:
    """First Monday-Friday of the month."""
    d = date(year, month, 1)
    while d.weekday() in (SATURDAY, SUNDAY):
        d += timedelta(days=1)
    return d


def last_weekday_of_month(year: int, month: int) -> date:
    """Last Monday-Friday of the month."""
    d = last_day_of_month(year, month)
    while d.weekday() in (SATURDAY, SUNDAY):
        d -= timedelta(days=1)
    return d


def first_of_weekday_in_month(year: int, month: int, weekday: int) -> date:
    """First occurrence of weekday (0=Mon) in the month."""
    d = date(year, month, 1)
    return d + timedelta(days=(weekday - d.weekday()) % 7)


def last_of_weekday_in_month(year: int, month: int, weekday: int) -> date:
    """Last occurrence of weekday (0=Mon) in the month."""
    d = last_day_of_month(year, month)
    return d - timedelta(days=(d.weekday() - weekday) % 7)


def add_months(d: date, months: int) -> date:
    """Add months to d, clamping the day to the target month's length."""
    return d + relativedelta(months=months)


def add_years(d: date, years: int) -> date:
    """Add years to d (29 Feb clamps to 28 Feb)."""
    return d + relativedelta(years=years)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start's month to end's month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def days_between(a: date, b: date) -> int:
    """Absolute number of days between two dates."""
    return abs((a - b).days)
