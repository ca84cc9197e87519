"""
Subscription, settings and sync-result types, plus the error hierarchy.
"""

import logging
from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/subly-sync-state.db"
DEFAULT_CONFIG = Path.home() / ".config/subly-sync.conf"
DEFAULT_TOKEN_FILE = Path.home() / ".local/share/subly-sync-token.json"

DEDICATED_CALENDAR_NAME = "Subly Subscriptions"
PRIMARY_CALENDAR_ID = "primary"

PERIODS = ("monthly", "quarterly", "semiannual", "annual")
REMINDER_METHODS = ("popup", "email")

logger = logging.getLogger(__name__)


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class RemoteStoreError(CalendarSyncError):
    """A remote call failed for a reason other than a missing object or credential."""

    pass


class NotFoundError(CalendarSyncError):
    """The remote event or calendar does not exist."""

    pass


class UnauthorizedError(CalendarSyncError):
    """The bearer credential is missing, stale or revoked."""

    pass


class InvalidStartDateError(CalendarSyncError, ValueError):
    """A subscription's start date is not a valid YYYY-MM-DD calendar date."""

    pass


class ImportFormatError(CalendarSyncError, ValueError):
    """An import file is not JSON, has the wrong shape, or holds no usable rows."""

    pass


@dataclass
class AppConfig:
    """Configuration for the command-line application."""

    state_db_path: Path
    client_secrets_file: Path | None = None
    token_file: Path = DEFAULT_TOKEN_FILE
    calendar_name: str = DEDICATED_CALENDAR_NAME
    verbose: bool = False


@dataclass
class Reminder:
    """Per-subscription reminder override."""

    enabled: bool = True
    days_before: int = 1
    method: str = "popup"  # 'popup' or 'email'

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "daysBefore": self.days_before, "method": self.method}

    @classmethod
    def from_dict(cls, raw: dict) -> "Reminder":
        return cls(
            enabled=bool(raw.get("enabled", True)),
            days_before=_to_int_in_range(raw.get("daysBefore"), 1, 0, 365),
            method="email" if raw.get("method") == "email" else "popup",
        )


@dataclass
class CalendarLink:
    """Link between a subscription and its remote calendar event."""

    calendar_id: str | None = None
    event_id: str | None = None
    synced_at: str | None = None  # ISO 8601
    last_error: str | None = None

    @property
    def is_linked(self) -> bool:
        return bool(self.calendar_id and self.event_id)

    def to_dict(self) -> dict:
        out = {
            "calendarId": self.calendar_id,
            "eventId": self.event_id,
            "syncedAt": self.synced_at,
            "lastError": self.last_error,
        }
        return {k: v for k, v in out.items() if v is not None}

    @classmethod
    def from_dict(cls, raw: dict) -> "CalendarLink":
        return cls(
            calendar_id=_blank_to_none(raw.get("calendarId")),
            event_id=_blank_to_none(raw.get("eventId")),
            synced_at=_blank_to_none(raw.get("syncedAt")),
            last_error=_blank_to_none(raw.get("lastError")),
        )


@dataclass
class Subscription:
    """A recurring subscription tracked locally."""

    id: str
    name: str
    price: float
    currency: str
    period: str  # one of PERIODS
    start_date: str  # YYYY-MM-DD
    category: str | None = None
    reminder: Reminder | None = None
    calendar: CalendarLink | None = None

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "period": self.period,
            "startDate": self.start_date,
        }
        if self.category:
            out["category"] = self.category
        if self.reminder is not None:
            out["reminder"] = self.reminder.to_dict()
        if self.calendar is not None:
            out["calendar"] = self.calendar.to_dict()
        return out

    @classmethod
    def from_dict(cls, raw: dict) -> "Subscription":
        """Build a Subscription from its stored form.

        Raises ValueError when a required field is missing or malformed.
        The start date is kept verbatim; corrupt dates are handled by the
        recurrence functions, not rejected here.
        """
        sub_id = str(raw.get("id") or "").strip()
        name = str(raw.get("name") or "").strip()
        if not sub_id or not name:
            raise ValueError("subscription requires non-empty 'id' and 'name'")
        period = raw.get("period")
        if period not in PERIODS:
            raise ValueError(f"unknown period {period!r}")
        price = float(raw.get("price", 0))
        if price < 0:
            raise ValueError(f"negative price {price!r}")
        reminder = raw.get("reminder")
        calendar = raw.get("calendar")
        return cls(
            id=sub_id,
            name=name,
            price=price,
            currency=(str(raw.get("currency") or "USD").strip().upper() or "USD"),
            period=period,
            start_date=str(raw.get("startDate") or ""),
            category=_blank_to_none(raw.get("category")),
            reminder=Reminder.from_dict(reminder) if isinstance(reminder, dict) else None,
            calendar=CalendarLink.from_dict(calendar) if isinstance(calendar, dict) else None,
        )


@dataclass
class Settings:
    """Application settings relevant to scheduling and sync."""

    calendar_auto_sync_all: bool = True
    calendar_use_dedicated_calendar: bool = False
    calendar_subscriptions_calendar_id: str | None = None
    calendar_reminder_days_before: int = 1
    calendar_reminder_method: str = "popup"
    notify_days_before: int = 1

    def to_dict(self) -> dict:
        out = {
            "calendarAutoSyncAll": self.calendar_auto_sync_all,
            "calendarUseDedicatedCalendar": self.calendar_use_dedicated_calendar,
            "calendarSubscriptionsCalendarId": self.calendar_subscriptions_calendar_id,
            "calendarReminderDaysBefore": self.calendar_reminder_days_before,
            "calendarReminderMethod": self.calendar_reminder_method,
            "notifyDaysBefore": self.notify_days_before,
        }
        return {k: v for k, v in out.items() if v is not None}

    @classmethod
    def from_dict(cls, raw: dict | None) -> "Settings":
        raw = raw or {}
        defaults = cls()
        return cls(
            calendar_auto_sync_all=bool(
                raw.get("calendarAutoSyncAll", defaults.calendar_auto_sync_all)
            ),
            calendar_use_dedicated_calendar=bool(raw.get("calendarUseDedicatedCalendar", False)),
            calendar_subscriptions_calendar_id=_blank_to_none(
                raw.get("calendarSubscriptionsCalendarId")
            ),
            calendar_reminder_days_before=_to_int_in_range(
                raw.get("calendarReminderDaysBefore"),
                defaults.calendar_reminder_days_before,
                0,
                365,
            ),
            calendar_reminder_method=(
                "email" if raw.get("calendarReminderMethod") == "email" else "popup"
            ),
            notify_days_before=_to_int_in_range(
                raw.get("notifyDaysBefore"), defaults.notify_days_before, 0, 30
            ),
        )


@dataclass
class AppState:
    """The whole persisted blob: subscriptions plus settings."""

    subscriptions: list[Subscription] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)

    def to_dict(self) -> dict:
        return {
            "subscriptions": [s.to_dict() for s in self.subscriptions],
            "settings": self.settings.to_dict(),
        }


@dataclass
class SyncResult:
    """Outcome of reconciling one subscription."""

    ok: bool
    error: str | None = None
    warnings: list[str] = field(default_factory=list)  # best-effort failures, never fatal
    unauthorized: bool = False  # caller should re-run with interactive authorization


@dataclass
class BatchResult:
    """Aggregate outcome of a sync-all pass."""

    ok_count: int = 0
    fail_count: int = 0
    first_error: str | None = None
    skipped: bool = False  # another batch was already running

    def as_dict(self) -> dict:
        return asdict(self)


def normalize_state(raw: dict | None) -> AppState:
    """Coerce a raw stored blob into an AppState, dropping malformed rows."""
    raw = raw if isinstance(raw, dict) else {}
    rows = raw.get("subscriptions")
    subscriptions: list[Subscription] = []
    seen: set[str] = set()
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        try:
            sub = Subscription.from_dict(row)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed subscription {row.get('id')!r}: {e}")
            continue
        if sub.id in seen:
            logger.warning(f"Dropping duplicate subscription id {sub.id!r}")
            continue
        seen.add(sub.id)
        subscriptions.append(sub)
    settings = raw.get("settings")
    return AppState(
        subscriptions=subscriptions,
        settings=Settings.from_dict(settings if isinstance(settings, dict) else None),
    )


def _blank_to_none(value) -> str | None:
    text = str(value if value is not None else "").strip()
    return text or None


def _to_int_in_range(value, fallback: int, lo: int, hi: int) -> int:
    try:
        n = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return fallback
    return max(lo, min(hi, n))
