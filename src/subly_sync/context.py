"""
Single-writer holder for the in-memory application state.
"""

from collections.abc import Callable
from dataclasses import replace

from subly_sync.models import AppState
from subly_sync.models import CalendarLink
from subly_sync.models import Settings
from subly_sync.models import Subscription


class SyncContext:
    """Owns the canonical AppState and publishes every mutation.

    The reconciler reads subscriptions and settings through this object and
    writes back only calendar links and the cached dedicated calendar id.
    Readers always see the latest list, so an edit made while a batch is
    running wins for the items the batch has not reached yet.
    """

    def __init__(self, state: AppState, on_change: Callable[[AppState], None] | None = None):
        self._state = state
        self._on_change = on_change

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def settings(self) -> Settings:
        return self._state.settings

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._state.subscriptions)

    def get_subscription(self, subscription_id: str) -> Subscription | None:
        for sub in self._state.subscriptions:
            if sub.id == subscription_id:
                return sub
        return None

    def _publish(self):
        if self._on_change:
            self._on_change(self._state)

    def upsert_subscription(self, sub: Subscription):
        """Insert or replace a subscription, keeping list order for existing ids."""
        subs = self._state.subscriptions
        for i, existing in enumerate(subs):
            if existing.id == sub.id:
                subs[i] = sub
                break
        else:
            subs.append(sub)
        self._publish()

    def remove_subscription(self, subscription_id: str) -> Subscription | None:
        sub = self.get_subscription(subscription_id)
        if sub is None:
            return None
        self._state.subscriptions = [s for s in self._state.subscriptions if s.id != subscription_id]
        self._publish()
        return sub

    def replace_subscriptions(self, subscriptions: list[Subscription]):
        self._state.subscriptions = list(subscriptions)
        self._publish()

    def record_link(self, subscription_id: str, link: CalendarLink) -> bool:
        """Set the calendar link on the current record for *subscription_id*.

        Only the link field is touched. Returns False when the subscription
        was deleted in the meantime.
        """
        subs = self._state.subscriptions
        for i, existing in enumerate(subs):
            if existing.id == subscription_id:
                subs[i] = replace(existing, calendar=link)
                self._publish()
                return True
        return False

    def update_settings(self, **changes):
        self._state.settings = replace(self._state.settings, **changes)
        self._publish()
