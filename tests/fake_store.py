"""
In-memory fakes for the remote event store and the credential provider.

Duck-type-compatible stand-ins for GoogleCalendarStore and
GoogleCredentialProvider. No network is involved: calendars are plain dicts
keyed by calendar id, each holding events keyed by event id.
"""

import copy

from subly_sync.models import NotFoundError
from subly_sync.models import UnauthorizedError


class FakeEventStore:
    """In-memory stub that satisfies the remote event store contract."""

    def __init__(self, calendars: tuple = ("primary",)):
        # calendar_id → {event_id → event body}
        self._calendars: dict[str, dict[str, dict]] = {cid: {} for cid in calendars}
        self._names: dict[str, str] = {}
        self._counter = 0
        self._queued: dict[str, list[Exception]] = {}
        self._rules: list[tuple[str, object, Exception]] = []
        self._read_overrides: dict[str, str] = {}
        self.revoked_tokens: set[str] = set()

        self.creates: list[tuple[str, str]] = []
        self.updates: list[tuple[str, str]] = []
        self.gets: list[tuple[str, str]] = []
        self.deletes: list[tuple[str, str]] = []
        self.ensures: list[str] = []
        self.tokens: list[str] = []

    # ------------------------------------------------------------------ #
    # Internal helpers                                                      #
    # ------------------------------------------------------------------ #

    def _new_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def _check(self, method: str, token: str, **info):
        self.tokens.append(token)
        if token in self.revoked_tokens:
            raise UnauthorizedError(f"{method}: token {token} revoked")
        queued = self._queued.get(method)
        if queued:
            raise queued.pop(0)
        for rule_method, predicate, error in self._rules:
            if rule_method == method and predicate(info):
                raise error

    def _calendar(self, calendar_id: str, action: str) -> dict[str, dict]:
        if calendar_id not in self._calendars:
            raise NotFoundError(f"{action}: calendar {calendar_id} not found")
        return self._calendars[calendar_id]

    # ------------------------------------------------------------------ #
    # Remote event store interface                                          #
    # ------------------------------------------------------------------ #

    def create(self, calendar_id: str, body: dict, token: str) -> str:
        self.creates.append((calendar_id, body.get("summary")))
        self._check("create", token, calendar_id=calendar_id, body=body)
        events = self._calendar(calendar_id, "create")
        event_id = self._new_id("evt")
        events[event_id] = dict(copy.deepcopy(body), id=event_id)
        return event_id

    def update(self, calendar_id: str, event_id: str, body: dict, token: str) -> str:
        self.updates.append((calendar_id, event_id))
        self._check("update", token, calendar_id=calendar_id, event_id=event_id, body=body)
        events = self._calendar(calendar_id, "update")
        if event_id not in events:
            raise NotFoundError(f"update: event {event_id} not found")
        events[event_id].update(copy.deepcopy(body))
        return event_id

    def get(self, calendar_id: str, event_id: str, token: str) -> dict:
        self.gets.append((calendar_id, event_id))
        self._check("get", token, calendar_id=calendar_id, event_id=event_id)
        events = self._calendar(calendar_id, "get")
        if event_id not in events:
            raise NotFoundError(f"get: event {event_id} not found")
        event = copy.deepcopy(events[event_id])
        if event_id in self._read_overrides:
            event["start"] = {"date": self._read_overrides[event_id]}
        return event

    def delete(self, calendar_id: str, event_id: str, token: str):
        self.deletes.append((calendar_id, event_id))
        self._check("delete", token, calendar_id=calendar_id, event_id=event_id)
        self._calendars.get(calendar_id, {}).pop(event_id, None)

    def ensure_named_container(self, name: str, token: str) -> str:
        self.ensures.append(name)
        self._check("ensure_named_container", token, name=name)
        for calendar_id, existing in self._names.items():
            if existing.lower() == name.lower() and calendar_id in self._calendars:
                return calendar_id
        calendar_id = self._new_id("cal")
        self._calendars[calendar_id] = {}
        self._names[calendar_id] = name
        return calendar_id

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def fail_next(self, method: str, error: Exception):
        """Make the next call to *method* raise *error*."""
        self._queued.setdefault(method, []).append(error)

    def fail_when(self, method: str, predicate, error: Exception):
        """Make every call to *method* whose arguments satisfy *predicate* raise *error*."""
        self._rules.append((method, predicate, error))

    def clear_failures(self):
        self._queued.clear()
        self._rules.clear()

    def override_read_start(self, event_id: str, start_date: str):
        """Make get() report a different start date than the stored one."""
        self._read_overrides[event_id] = start_date

    def drop_calendar(self, calendar_id: str):
        self._calendars.pop(calendar_id, None)

    def drop_event(self, calendar_id: str, event_id: str):
        self._calendars[calendar_id].pop(event_id, None)

    def events(self, calendar_id: str) -> dict[str, dict]:
        return self._calendars.get(calendar_id, {})

    def has_event(self, calendar_id: str, event_id: str) -> bool:
        return event_id in self._calendars.get(calendar_id, {})

    @property
    def event_count(self) -> int:
        return sum(len(events) for events in self._calendars.values())

    def reset_counters(self):
        """Clear the recorded calls between sync runs."""
        for calls in (self.creates, self.updates, self.gets, self.deletes, self.ensures):
            calls.clear()


class FakeCredentialProvider:
    """Issues a fresh numbered token after every invalidation."""

    def __init__(self, allow_non_interactive: bool = True):
        self.allow_non_interactive = allow_non_interactive
        self.acquired: list[bool] = []
        self.invalidated: list[str] = []
        self._issued = 0
        self._current: str | None = None

    def acquire(self, interactive: bool) -> str:
        self.acquired.append(interactive)
        if self._current is None:
            if not interactive and not self.allow_non_interactive:
                raise UnauthorizedError("No cached credential")
            self._issued += 1
            self._current = f"token-{self._issued}"
        return self._current

    def invalidate(self, token: str):
        self.invalidated.append(token)
        if token == self._current:
            self._current = None
