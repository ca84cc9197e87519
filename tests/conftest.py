"""
Shared pytest fixtures and subscription helpers.
"""

from datetime import date
from datetime import datetime
from datetime import timezone

import pytest

from subly_sync.context import SyncContext
from subly_sync.db import StateStore
from subly_sync.models import AppState
from subly_sync.models import Settings
from subly_sync.models import Subscription
from subly_sync.sync import SubscriptionSynchronizer
from tests.fake_store import FakeCredentialProvider
from tests.fake_store import FakeEventStore

TODAY = date(2024, 2, 15)
NOW = datetime(2024, 2, 15, 12, 0, tzinfo=timezone.utc)


def make_subscription(
    sub_id: str,
    name: str = "Streaming",
    price: float = 9.99,
    currency: str = "USD",
    period: str = "monthly",
    start_date: str = "2024-01-31",
    **kwargs,
) -> Subscription:
    """Return a Subscription with sensible defaults for sync tests."""
    return Subscription(
        id=sub_id,
        name=name,
        price=price,
        currency=currency,
        period=period,
        start_date=start_date,
        **kwargs,
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def state_store(db_path):
    with StateStore(db_path) as store:
        yield store


@pytest.fixture
def saved_states():
    """Every state published by the context, in order."""
    return []


@pytest.fixture
def context(saved_states):
    return SyncContext(
        AppState(settings=Settings(calendar_auto_sync_all=False)),
        on_change=lambda state: saved_states.append(state.to_dict()),
    )


@pytest.fixture
def store():
    return FakeEventStore()


@pytest.fixture
def credentials():
    return FakeCredentialProvider()


@pytest.fixture
def synchronizer(context, store, credentials):
    return SubscriptionSynchronizer(
        context, store, credentials, today=lambda: TODAY, clock=lambda: NOW
    )
