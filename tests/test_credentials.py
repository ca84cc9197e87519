"""
Unit tests for GoogleCredentialProvider: silent vs interactive acquisition
and how consent failures are reported. The OAuth flow is replaced with a
stub so no browser or local server is started.
"""

import pytest
from google.oauth2.credentials import Credentials
from oauthlib.oauth2.rfc6749.errors import AccessDeniedError

from subly_sync import credentials as credentials_module
from subly_sync.credentials import GoogleCredentialProvider
from subly_sync.models import UnauthorizedError
from subly_sync.sync import SubscriptionSynchronizer
from tests.conftest import NOW
from tests.conftest import TODAY
from tests.conftest import make_subscription


class _StubFlow:
    """Stands in for InstalledAppFlow; run_local_server returns or raises *outcome*."""

    outcome: object = None

    @classmethod
    def from_client_secrets_file(cls, path, scopes):
        return cls()

    def run_local_server(self, port=0):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class _BrokenSecretsFlow:
    @classmethod
    def from_client_secrets_file(cls, path, scopes):
        raise ValueError("Client secrets must be for a web or installed app.")


@pytest.fixture
def secrets_file(tmp_path):
    path = tmp_path / "client_secret.json"
    path.write_text("{}")
    return path


@pytest.fixture
def provider(tmp_path, secrets_file):
    return GoogleCredentialProvider(tmp_path / "token.json", secrets_file)


@pytest.fixture
def flow(monkeypatch):
    monkeypatch.setattr(credentials_module, "InstalledAppFlow", _StubFlow)
    monkeypatch.setattr(_StubFlow, "outcome", None)
    return _StubFlow


def test_silent_acquire_without_token_file(provider):
    with pytest.raises(UnauthorizedError):
        provider.acquire(interactive=False)


def test_interactive_acquire_stores_token(provider, flow, tmp_path):
    flow.outcome = Credentials(token="fresh")

    assert provider.acquire(interactive=True) == "fresh"
    assert (tmp_path / "token.json").exists()
    # Cached in memory: no second consent.
    flow.outcome = RuntimeError("consent should not run again")
    assert provider.acquire(interactive=False) == "fresh"


def test_missing_secrets_file(tmp_path):
    provider = GoogleCredentialProvider(tmp_path / "token.json", tmp_path / "absent.json")
    with pytest.raises(UnauthorizedError):
        provider.acquire(interactive=True)


@pytest.mark.parametrize(
    "error",
    [
        OSError("could not locate runnable browser"),
        AccessDeniedError(description="The user denied access"),
    ],
)
def test_consent_failure_is_unauthorized(provider, flow, error):
    flow.outcome = error
    with pytest.raises(UnauthorizedError) as excinfo:
        provider.acquire(interactive=True)
    assert excinfo.value.__cause__ is error


def test_malformed_secrets_is_unauthorized(provider, monkeypatch):
    monkeypatch.setattr(credentials_module, "InstalledAppFlow", _BrokenSecretsFlow)
    with pytest.raises(UnauthorizedError, match="Interactive authorization failed"):
        provider.acquire(interactive=True)


def test_denied_consent_fails_the_item_not_the_batch(context, store, provider, flow):
    flow.outcome = AccessDeniedError(description="The user denied access")
    context.upsert_subscription(make_subscription("s1", name="Alpha"))
    context.upsert_subscription(make_subscription("s2", name="Beta"))
    synchronizer = SubscriptionSynchronizer(
        context, store, provider, today=lambda: TODAY, clock=lambda: NOW
    )

    result = synchronizer.reconcile_all(interactive=True)

    assert (result.ok_count, result.fail_count) == (0, 2)
    assert "Interactive authorization failed" in result.first_error
    assert store.creates == []
