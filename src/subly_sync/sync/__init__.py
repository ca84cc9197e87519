"""
Application-facing sync orchestration: local edits first, then remote reconciliation.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date
from datetime import datetime

from subly_sync.context import SyncContext
from subly_sync.models import DEDICATED_CALENDAR_NAME
from subly_sync.models import BatchResult
from subly_sync.models import Subscription
from subly_sync.models import SyncResult
from subly_sync.sync.reconcile import Reconciler
from subly_sync.sync.reconcile import utcnow

ProgressCallback = Callable[[int, int, Subscription, SyncResult], None]


class SubscriptionSynchronizer:
    """Main synchronization engine.

    Local edits always land in the context first; remote sync runs after
    and its failure never undoes the local change.
    """

    def __init__(
        self,
        context: SyncContext,
        store,
        credentials,
        calendar_name: str = DEDICATED_CALENDAR_NAME,
        today: Callable[[], date] = date.today,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.context = context
        self.logger = logging.getLogger(__name__)
        self.reconciler = Reconciler(
            store, credentials, context, calendar_name=calendar_name, today=today, clock=clock
        )
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def reconcile_one(self, subscription_id: str, interactive: bool = True) -> SyncResult:
        """Sync a single subscription; the result is also recorded on its link."""
        sub = self.context.get_subscription(subscription_id)
        if sub is None:
            return SyncResult(ok=False, error=f"Unknown subscription {subscription_id!r}")
        return self.reconciler.reconcile(sub, interactive)

    def reconcile_all(
        self, interactive: bool = True, progress: ProgressCallback | None = None
    ) -> BatchResult:
        """Sync every subscription, one at a time, in list order.

        Individual failures are counted, not raised. Returns a skipped result
        without doing anything if another pass is already running.
        """
        if self._busy:
            self.logger.info("A sync pass is already running; not starting another")
            return BatchResult(skipped=True)

        self._busy = True
        result = BatchResult()
        try:
            ids = [sub.id for sub in self.context.subscriptions]
            self.logger.info(f"Syncing {len(ids)} subscription(s)...")
            for index, sub_id in enumerate(ids, 1):
                # Re-read so edits made since the pass started are honoured.
                sub = self.context.get_subscription(sub_id)
                if sub is None:
                    self.logger.debug(f"Subscription {sub_id} was deleted mid-pass; skipping")
                    continue
                outcome = self.reconciler.reconcile(sub, interactive)
                if outcome.ok:
                    result.ok_count += 1
                else:
                    result.fail_count += 1
                    if result.first_error is None:
                        result.first_error = outcome.error
                if progress:
                    progress(index, len(ids), sub, outcome)
        finally:
            self._busy = False

        self.logger.info(f"Sync finished: {result.ok_count} ok, {result.fail_count} failed")
        return result

    def _auto_sync(self, sub: Subscription, interactive: bool) -> SyncResult | None:
        if not self.context.settings.calendar_auto_sync_all:
            return None
        return self.reconcile_one(sub.id, interactive)

    def add_subscription(self, sub: Subscription, interactive: bool = True) -> SyncResult | None:
        """Store a new subscription, then sync it when auto-sync is on."""
        if self.context.get_subscription(sub.id) is not None:
            raise ValueError(f"Subscription id {sub.id!r} already exists")
        self.context.upsert_subscription(replace(sub, calendar=None))
        return self._auto_sync(sub, interactive)

    def edit_subscription(self, sub: Subscription, interactive: bool = True) -> SyncResult | None:
        """Replace a subscription's user-editable fields, keeping its calendar link."""
        existing = self.context.get_subscription(sub.id)
        if existing is None:
            raise KeyError(sub.id)
        self.context.upsert_subscription(replace(sub, calendar=existing.calendar))
        return self._auto_sync(sub, interactive)

    def delete_subscription(self, subscription_id: str, interactive: bool = True) -> SyncResult:
        """Delete locally, then best-effort delete the linked remote event.

        A remote failure shows up in ``warnings``; the local deletion stands.
        """
        removed = self.context.remove_subscription(subscription_id)
        if removed is None:
            return SyncResult(ok=False, error=f"Unknown subscription {subscription_id!r}")
        warnings: list[str] = []
        if removed.calendar is not None and removed.calendar.is_linked:
            warnings = self.reconciler.delete_linked_event(removed.calendar, interactive)
        return SyncResult(ok=True, warnings=warnings)
