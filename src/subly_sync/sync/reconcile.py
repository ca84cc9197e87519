"""
Per-subscription reconciliation against the remote event store.

Each subscription starts in one of three link states:

    LINKED     has (calendarId, eventId) in the target calendar -> update + verify
    MIGRATING  linked, but to a different calendar -> delete old, then create
    UNLINKED   no usable link -> create

Remote calls return tagged Outcomes (ok / not_found / error). A not_found
while updating or verifying demotes LINKED to UNLINKED; any other error
ends the attempt for that subscription.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date
from datetime import datetime
from datetime import timezone

from subly_sync.context import SyncContext
from subly_sync.models import DEDICATED_CALENDAR_NAME
from subly_sync.models import PRIMARY_CALENDAR_ID
from subly_sync.models import CalendarLink
from subly_sync.models import InvalidStartDateError
from subly_sync.models import Subscription
from subly_sync.models import SyncResult
from subly_sync.recurrence import next_occurrence
from subly_sync.recurrence import parse_start_date
from subly_sync.sync.events import build_event_body
from subly_sync.sync.events import event_start_date
from subly_sync.sync.utils import ERROR
from subly_sync.sync.utils import NOT_FOUND
from subly_sync.sync.utils import OK
from subly_sync.sync.utils import Outcome
from subly_sync.sync.utils import attempt
from subly_sync.sync.utils import not_found

LINKED = "linked"
UNLINKED = "unlinked"
MIGRATING = "migrating"

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def link_state(link: CalendarLink | None, target_calendar_id: str) -> str:
    """Classify an existing link relative to the calendar the event should live in."""
    if link is None or not link.is_linked:
        return UNLINKED
    if link.calendar_id != target_calendar_id:
        return MIGRATING
    return LINKED


class Reconciler:
    """Keeps exactly one remote recurring event per subscription.

    ``store`` must provide create/update/get/delete/ensure_named_container,
    each taking a ``token`` keyword; ``credentials`` must provide
    acquire(interactive) and invalidate(token). The bearer token is cached
    across calls and dropped whenever the store reports it unauthorized.
    """

    def __init__(
        self,
        store,
        credentials,
        context: SyncContext,
        calendar_name: str = DEDICATED_CALENDAR_NAME,
        today: Callable[[], date] = date.today,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.credentials = credentials
        self.context = context
        self.calendar_name = calendar_name
        self.today = today
        self.clock = clock
        self._token: str | None = None
        self._interactive = False
        self._unauthorized = False

    # ------------------------------------------------------------------ #
    # Credential handling                                                  #
    # ------------------------------------------------------------------ #

    def invalidate_credential(self):
        """Forget the cached token and tell the provider it is stale."""
        self._unauthorized = True
        token, self._token = self._token, None
        if token:
            logger.debug("Invalidating cached credential")
            self.credentials.invalidate(token)

    def _acquire(self) -> Outcome:
        if self._token:
            return Outcome(OK, value=self._token)
        outcome = attempt(self.credentials.acquire, self._interactive)
        if outcome.ok:
            self._token = outcome.value
        elif outcome.unauthorized:
            self._unauthorized = True
        return outcome

    def _call(self, fn, *args) -> Outcome:
        token = self._acquire()
        if not token.ok:
            return token
        outcome = attempt(fn, *args, token=token.value)
        if outcome.unauthorized:
            self.invalidate_credential()
        return outcome

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    def _refresh_dedicated_calendar(self) -> Outcome:
        outcome = self._call(self.store.ensure_named_container, self.calendar_name)
        if outcome.ok:
            logger.debug(f"Dedicated calendar {self.calendar_name!r} is {outcome.value}")
            self.context.update_settings(calendar_subscriptions_calendar_id=outcome.value)
        return outcome

    def _resolve_target(self, sub: Subscription) -> Outcome:
        settings = self.context.settings
        if settings.calendar_use_dedicated_calendar:
            if settings.calendar_subscriptions_calendar_id:
                return Outcome(OK, value=settings.calendar_subscriptions_calendar_id)
            return self._refresh_dedicated_calendar()
        if sub.calendar is not None and sub.calendar.is_linked:
            return Outcome(OK, value=sub.calendar.calendar_id)
        return Outcome(OK, value=PRIMARY_CALENDAR_ID)

    def _best_effort_delete(self, calendar_id: str, event_id: str, reason: str) -> str | None:
        """Delete an event, treating a missing one as deleted. Returns a warning on failure."""
        outcome = self._call(self.store.delete, calendar_id, event_id)
        if outcome.status != ERROR:
            logger.debug(f"Deleted {reason} event {event_id} from {calendar_id}")
            return None
        warning = f"Could not delete {reason} event {event_id} from {calendar_id}: {outcome.message}"
        logger.warning(warning)
        return warning

    def _update_verified(
        self, calendar_id: str, event_id: str, body: dict, occurrence: date, warnings: list[str]
    ) -> Outcome:
        """Update the linked event and read it back.

        Returns OK with the event id only when the stored start date matches
        *occurrence*; a drifted or vanished event comes back as NOT_FOUND.
        """
        updated = self._call(self.store.update, calendar_id, event_id, body)
        if not updated.ok:
            return updated
        event_id = updated.value or event_id

        fetched = self._call(self.store.get, calendar_id, event_id)
        if not fetched.ok:
            return fetched

        stored_start = event_start_date(fetched.value or {})
        if stored_start != occurrence.isoformat():
            logger.warning(
                f"Event {event_id} in {calendar_id} starts {stored_start}, "
                f"expected {occurrence.isoformat()}; replacing it"
            )
            warning = self._best_effort_delete(calendar_id, event_id, "drifted")
            if warning:
                warnings.append(warning)
            return not_found(
                f"event {event_id} starts {stored_start}, expected {occurrence.isoformat()}"
            )
        return Outcome(OK, value=event_id)

    def _create(self, calendar_id: str, body: dict) -> Outcome:
        """Create the event; on a missing calendar, retry once in a fresh one.

        OK carries (calendar_id, event_id) since the retry may change the calendar.
        """
        created = self._call(self.store.create, calendar_id, body)
        if created.status != NOT_FOUND:
            return Outcome(created.status, value=(calendar_id, created.value), error=created.error)

        if self.context.settings.calendar_use_dedicated_calendar:
            logger.warning(f"Dedicated calendar {calendar_id} is gone; recreating it")
            refreshed = self._refresh_dedicated_calendar()
            if not refreshed.ok:
                return refreshed
            retry_id = refreshed.value
        elif calendar_id != PRIMARY_CALENDAR_ID:
            logger.warning(f"Calendar {calendar_id} is gone; falling back to the primary calendar")
            retry_id = PRIMARY_CALENDAR_ID
        else:
            return created

        retried = self._call(self.store.create, retry_id, body)
        return Outcome(retried.status, value=(retry_id, retried.value), error=retried.error)

    # ------------------------------------------------------------------ #
    # Results                                                              #
    # ------------------------------------------------------------------ #

    def _succeed(
        self, sub: Subscription, calendar_id: str, event_id: str, warnings: list[str]
    ) -> SyncResult:
        link = CalendarLink(
            calendar_id=calendar_id,
            event_id=event_id,
            synced_at=self.clock().isoformat(),
            last_error=None,
        )
        self.context.record_link(sub.id, link)
        logger.info(f"Synced {sub.name!r} -> {calendar_id}/{event_id}")
        return SyncResult(ok=True, warnings=warnings)

    def _fail(self, sub: Subscription, message: str, warnings: list[str]) -> SyncResult:
        current = self.context.get_subscription(sub.id)
        previous = current.calendar if current is not None else sub.calendar
        if previous is not None:
            link = replace(previous, last_error=message)
        else:
            link = CalendarLink(last_error=message)
        self.context.record_link(sub.id, link)
        logger.error(f"Failed to sync {sub.name!r}: {message}")
        return SyncResult(
            ok=False, error=message, warnings=warnings, unauthorized=self._unauthorized
        )

    # ------------------------------------------------------------------ #
    # Entry points                                                         #
    # ------------------------------------------------------------------ #

    def reconcile(self, sub: Subscription, interactive: bool = False) -> SyncResult:
        """Bring the remote event for *sub* in line with its current state."""
        self._interactive = interactive
        self._unauthorized = False
        warnings: list[str] = []

        try:
            parse_start_date(sub.start_date)
        except InvalidStartDateError as e:
            return self._fail(sub, str(e), warnings)

        occurrence = next_occurrence(sub.start_date, sub.period, self.today())
        body = build_event_body(sub, self.context.settings, occurrence)

        target = self._resolve_target(sub)
        if not target.ok:
            return self._fail(sub, target.message, warnings)
        calendar_id = target.value

        link = sub.calendar
        state = link_state(link, calendar_id)
        logger.debug(f"Reconciling {sub.name!r}: {state}, target {calendar_id}, next {occurrence}")

        if state == MIGRATING:
            warning = self._best_effort_delete(link.calendar_id, link.event_id, "migrated")
            if warning:
                warnings.append(warning)
            state = UNLINKED

        if state == LINKED:
            outcome = self._update_verified(calendar_id, link.event_id, body, occurrence, warnings)
            if outcome.ok:
                return self._succeed(sub, calendar_id, outcome.value, warnings)
            if outcome.status == ERROR:
                return self._fail(sub, outcome.message, warnings)
            logger.info(f"Event for {sub.name!r} is missing ({outcome.message}); recreating")

        created = self._create(calendar_id, body)
        if not created.ok:
            return self._fail(sub, created.message, warnings)
        created_calendar_id, event_id = created.value
        return self._succeed(sub, created_calendar_id, event_id, warnings)

    def delete_linked_event(self, link: CalendarLink, interactive: bool = False) -> list[str]:
        """Best-effort removal of a deleted subscription's event. Returns warnings."""
        self._interactive = interactive
        self._unauthorized = False
        if not link.is_linked:
            return []
        warning = self._best_effort_delete(link.calendar_id, link.event_id, "deleted subscription's")
        return [warning] if warning else []
