"""
Calendar event construction for subscription renewals.
"""

from datetime import date
from datetime import timedelta

from subly_sync.models import Settings
from subly_sync.models import Subscription

# Google Calendar accepts reminder overrides up to four weeks ahead.
MAX_REMINDER_MINUTES = 40320
MINUTES_PER_DAY = 1440

_RRULES = {
    "monthly": "RRULE:FREQ=MONTHLY",
    "quarterly": "RRULE:FREQ=MONTHLY;INTERVAL=3",
    "semiannual": "RRULE:FREQ=MONTHLY;INTERVAL=6",
    "annual": "RRULE:FREQ=YEARLY",
}

_PERIOD_LABELS = {
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "semiannual": "Every 6 months",
    "annual": "Yearly",
}


def build_rrule(period: str) -> str:
    return _RRULES[period]


def event_title(sub: Subscription) -> str:
    return f"{sub.name} · Renewal"


def format_amount(price: float, currency: str) -> str:
    return f"{price:,.2f} {currency.upper()}"


def event_description(sub: Subscription) -> str:
    lines = [
        f"Amount: {format_amount(sub.price, sub.currency)}",
        f"Period: {_PERIOD_LABELS[sub.period]}",
    ]
    if sub.category:
        lines.append(f"Category: {sub.category}")
    return "\n".join(lines)


def clamp_reminder_minutes(minutes: int) -> int:
    return max(0, min(MAX_REMINDER_MINUTES, int(minutes)))


def effective_reminder(sub: Subscription, settings: Settings) -> tuple[int, str]:
    """(lead minutes, method) for *sub*: its own enabled override, else the global default."""
    if sub.reminder is not None and sub.reminder.enabled:
        days, method = sub.reminder.days_before, sub.reminder.method
    else:
        days, method = settings.calendar_reminder_days_before, settings.calendar_reminder_method
    return clamp_reminder_minutes(days * MINUTES_PER_DAY), method


def build_event_body(sub: Subscription, settings: Settings, occurrence: date) -> dict:
    """
    Build the recurring all-day event resource for *sub*.

    The event starts on *occurrence* (the next renewal) and recurs at the
    subscription's period. Zero lead minutes produces an explicit empty
    override list, which disables reminders rather than falling back to the
    calendar's defaults.
    """
    minutes, method = effective_reminder(sub, settings)
    overrides = [{"method": method, "minutes": minutes}] if minutes > 0 else []
    return {
        "summary": event_title(sub),
        "description": event_description(sub),
        "start": {"date": occurrence.isoformat()},
        "end": {"date": (occurrence + timedelta(days=1)).isoformat()},
        "recurrence": [build_rrule(sub.period)],
        "reminders": {"useDefault": False, "overrides": overrides},
    }


def event_start_date(event: dict) -> str | None:
    """The all-day start date of an event resource, if it has one."""
    start = event.get("start") or {}
    value = start.get("date")
    return str(value) if value else None
