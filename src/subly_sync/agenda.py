"""
Spend and agenda projections built on the recurrence functions.
"""

from collections import defaultdict
from datetime import date
from datetime import timedelta

from subly_sync.models import Subscription
from subly_sync.recurrence import add_months
from subly_sync.recurrence import occurrences_in_range
from subly_sync.recurrence import step_months


def monthly_equivalent(sub: Subscription) -> float:
    return sub.price / step_months(sub.period)


def annual_cost(sub: Subscription) -> float:
    return sub.price * 12 / step_months(sub.period)


def upcoming_renewals(
    subscriptions: list[Subscription], today: date, days: int
) -> list[tuple[Subscription, date]]:
    """Renewals falling within [today, today + days], soonest first."""
    until = today + timedelta(days=days)
    due: list[tuple[Subscription, date]] = []
    for sub in subscriptions:
        for occurrence in occurrences_in_range(sub.start_date, sub.period, today, until):
            due.append((sub, occurrence))
    due.sort(key=lambda pair: (pair[1], pair[0].name.lower()))
    return due


def trailing_months(today: date, count: int = 12) -> list[date]:
    """First day of each of the last *count* months, oldest first, ending with today's month."""
    current = today.replace(day=1)
    return [add_months(current, -offset) for offset in range(count - 1, -1, -1)]


def monthly_spend_projection(
    subscriptions: list[Subscription], today: date, count: int = 12
) -> dict[str, list[float]]:
    """Per-currency spend for each of the trailing *count* calendar months.

    Amounts stay in each subscription's own currency; a month total is the
    price times the number of renewals falling in that month.
    """
    months = trailing_months(today, count)
    totals: dict[str, list[float]] = defaultdict(lambda: [0.0] * count)
    for sub in subscriptions:
        row = totals[sub.currency.upper()]
        for i, month_start in enumerate(months):
            month_end = add_months(month_start, 1) - timedelta(days=1)
            hits = occurrences_in_range(sub.start_date, sub.period, month_start, month_end)
            row[i] += sub.price * len(hits)
    return dict(totals)
