"""
Unit tests for calendar event construction.
"""

from datetime import date

import pytest

from subly_sync.models import Reminder
from subly_sync.models import Settings
from subly_sync.sync.events import MAX_REMINDER_MINUTES
from subly_sync.sync.events import build_event_body
from subly_sync.sync.events import build_rrule
from subly_sync.sync.events import clamp_reminder_minutes
from subly_sync.sync.events import effective_reminder
from subly_sync.sync.events import event_description
from subly_sync.sync.events import event_start_date
from subly_sync.sync.events import event_title
from subly_sync.sync.events import format_amount
from tests.conftest import make_subscription


@pytest.mark.parametrize(
    "period, rrule",
    [
        ("monthly", "RRULE:FREQ=MONTHLY"),
        ("quarterly", "RRULE:FREQ=MONTHLY;INTERVAL=3"),
        ("semiannual", "RRULE:FREQ=MONTHLY;INTERVAL=6"),
        ("annual", "RRULE:FREQ=YEARLY"),
    ],
)
def test_build_rrule(period, rrule):
    assert build_rrule(period) == rrule


def test_event_title():
    assert event_title(make_subscription("s1", name="Gym")) == "Gym · Renewal"


def test_format_amount_groups_thousands():
    assert format_amount(1234.5, "eur") == "1,234.50 EUR"


class TestDescription:
    def test_without_category(self):
        sub = make_subscription("s1", price=9.99, period="semiannual")
        assert event_description(sub) == "Amount: 9.99 USD\nPeriod: Every 6 months"

    def test_with_category(self):
        sub = make_subscription("s1", price=120, currency="GBP", period="annual", category="Software")
        assert event_description(sub).splitlines() == [
            "Amount: 120.00 GBP",
            "Period: Yearly",
            "Category: Software",
        ]


class TestReminders:
    def test_global_default_applies_without_override(self):
        sub = make_subscription("s1")
        assert effective_reminder(sub, Settings()) == (1440, "popup")

    def test_disabled_override_falls_back_to_global(self):
        sub = make_subscription("s1", reminder=Reminder(enabled=False, days_before=5, method="email"))
        settings = Settings(calendar_reminder_days_before=2, calendar_reminder_method="email")
        assert effective_reminder(sub, settings) == (2880, "email")

    def test_enabled_override_wins(self):
        sub = make_subscription("s1", reminder=Reminder(enabled=True, days_before=7, method="popup"))
        settings = Settings(calendar_reminder_method="email")
        assert effective_reminder(sub, settings) == (7 * 1440, "popup")

    @pytest.mark.parametrize(
        "minutes, expected",
        [(-10, 0), (0, 0), (1440, 1440), (40 * 1440, MAX_REMINDER_MINUTES)],
    )
    def test_clamp(self, minutes, expected):
        assert clamp_reminder_minutes(minutes) == expected

    def test_zero_lead_time_disables_reminders(self):
        sub = make_subscription("s1", reminder=Reminder(enabled=True, days_before=0))
        body = build_event_body(sub, Settings(), date(2024, 3, 2))
        assert body["reminders"] == {"useDefault": False, "overrides": []}


class TestEventBody:
    def test_all_day_event_on_occurrence(self):
        sub = make_subscription("s1", name="Cloud", period="quarterly", category="Storage")
        body = build_event_body(sub, Settings(), date(2024, 3, 2))

        assert body["summary"] == "Cloud · Renewal"
        assert body["start"] == {"date": "2024-03-02"}
        assert body["end"] == {"date": "2024-03-03"}
        assert body["recurrence"] == ["RRULE:FREQ=MONTHLY;INTERVAL=3"]
        assert "Category: Storage" in body["description"]

    def test_end_date_crosses_month(self):
        body = build_event_body(make_subscription("s1"), Settings(), date(2024, 2, 29))
        assert body["end"] == {"date": "2024-03-01"}

    def test_event_start_date_reads_all_day_start(self):
        body = build_event_body(make_subscription("s1"), Settings(), date(2024, 3, 2))
        assert event_start_date(body) == "2024-03-02"

    def test_event_start_date_ignores_timed_events(self):
        assert event_start_date({"start": {"dateTime": "2024-03-02T09:00:00Z"}}) is None
        assert event_start_date({}) is None
