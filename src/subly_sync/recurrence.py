"""
Renewal date projection over the fixed billing periods.

Dates are timezone-naive calendar dates. Month addition lets the day of
month overflow into the following month (Jan 31 + 1 month is Mar 2 in a
leap year, Mar 3 otherwise), and occurrences are produced by stepping
cumulatively from the start date, so once a date has overflowed it stays
shifted (Jan 31 -> Mar 2 -> Apr 2 -> ...). Every function in this module
uses the same rule.
"""

import calendar
import logging
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta

from subly_sync.models import InvalidStartDateError

logger = logging.getLogger(__name__)

_STEP_MONTHS = {"monthly": 1, "quarterly": 3, "semiannual": 6, "annual": 12}

# Local wall-clock hour at which renewal reminders fire.
REMINDER_HOUR = 9
# A fire time this close to "now" counts as already missed.
MISSED_BUFFER = timedelta(seconds=5)
MISSED_DELAY = timedelta(minutes=1)
MAX_NOTIFY_DAYS = 30


def step_months(period: str) -> int:
    """Months between two consecutive occurrences of *period*."""
    return _STEP_MONTHS[period]


def add_months(d: date, months: int) -> date:
    """Add calendar months to *d*, rolling day overflow into the next month."""
    total = d.month - 1 + months
    year = d.year + total // 12
    month = total % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    if d.day <= last_day:
        return date(year, month, d.day)
    return date(year, month, last_day) + timedelta(days=d.day - last_day)


def parse_start_date(text: str) -> date:
    """Parse a YYYY-MM-DD start date.

    Raises InvalidStartDateError for anything that is not a real calendar date.
    """
    try:
        year, month, day = (int(part) for part in str(text).strip().split("-"))
        return date(year, month, day)
    except (TypeError, ValueError) as e:
        raise InvalidStartDateError(f"Invalid start date: {text!r}") from e


def _as_date(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _first_on_or_after(start: date, step: int, from_: date) -> date:
    cursor = start
    while cursor < from_:
        cursor = add_months(cursor, step)
    return cursor


def next_occurrence(start_date: str, period: str, from_: date) -> date:
    """Earliest renewal on or after *from_*.

    A datetime *from_* is reduced to its date, so a renewal falling today is
    still "next" for the whole day. An unparseable start date yields *from_*
    unchanged; use parse_start_date() to tell that case apart.
    """
    from_ = _as_date(from_)
    try:
        start = parse_start_date(start_date)
    except InvalidStartDateError:
        logger.warning(f"Unparseable start date {start_date!r}, projecting to {from_}")
        return from_
    return _first_on_or_after(start, step_months(period), from_)


def occurrences_in_range(start_date: str, period: str, from_: date, to: date) -> list[date]:
    """All renewals d with from_ <= d <= to, ascending.

    Returns an empty list when the start date is unparseable.
    """
    from_ = _as_date(from_)
    to = _as_date(to)
    try:
        start = parse_start_date(start_date)
    except InvalidStartDateError:
        return []
    step = step_months(period)
    out: list[date] = []
    cursor = _first_on_or_after(start, step, from_)
    while cursor <= to:
        out.append(cursor)
        cursor = add_months(cursor, step)
    return out


def clamp_notify_days(value) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(MAX_NOTIFY_DAYS, n))


def reminder_fire_time(start_date: str, period: str, days_before: int, now: datetime) -> datetime:
    """When the local reminder for the next renewal should fire.

    The reminder fires *days_before* days ahead of the next renewal at
    REMINDER_HOUR local time. A fire time that is already due (or within
    MISSED_BUFFER of *now*) is replaced by now + MISSED_DELAY so a reminder
    missed while the app was closed still fires once.
    """
    days_before = clamp_notify_days(days_before)
    occurrence = next_occurrence(start_date, period, now)
    fire_at = datetime.combine(
        occurrence - timedelta(days=days_before), time(REMINDER_HOUR), tzinfo=now.tzinfo
    )
    if fire_at <= now + MISSED_BUFFER:
        return now + MISSED_DELAY
    return fire_at
