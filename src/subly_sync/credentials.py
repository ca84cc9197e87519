"""
OAuth credential provider for the Google Calendar store.
"""

import logging
from pathlib import Path

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from subly_sync.models import UnauthorizedError

SCOPES = ["https://www.googleapis.com/auth/calendar"]

logger = logging.getLogger(__name__)


class GoogleCredentialProvider:
    """Hands out bearer tokens from an authorized-user token file.

    acquire(interactive=False) never opens a browser: with no usable cached
    credential it raises UnauthorizedError so the caller can ask the user.
    """

    def __init__(self, token_file: Path, client_secrets_file: Path | None = None):
        self.token_file = token_file
        self.client_secrets_file = client_secrets_file
        self._creds: Credentials | None = None
        self._force_refresh = False

    def _load(self) -> Credentials | None:
        if not self.token_file.exists():
            return None
        try:
            return Credentials.from_authorized_user_file(str(self.token_file), SCOPES)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable token file {self.token_file}: {e}")
            return None

    def _store(self, creds: Credentials):
        self.token_file.parent.mkdir(parents=True, exist_ok=True)
        self.token_file.write_text(creds.to_json())

    def _consent(self) -> Credentials:
        if not self.client_secrets_file or not self.client_secrets_file.exists():
            raise UnauthorizedError(
                "Authorization required but no client secrets file is configured"
            )
        try:
            flow = InstalledAppFlow.from_client_secrets_file(str(self.client_secrets_file), SCOPES)
            return flow.run_local_server(port=0)
        except (ValueError, OSError, GoogleAuthError, OAuth2Error) as e:
            logger.error(f"Interactive authorization failed: {e}")
            raise UnauthorizedError(f"Interactive authorization failed: {e}") from e

    def acquire(self, interactive: bool) -> str:
        """Return a valid access token, refreshing or prompting as allowed."""
        creds = self._creds or self._load()
        stale = creds is None or self._force_refresh or not creds.valid
        renewed = stale

        if creds is not None and stale and creds.refresh_token:
            try:
                creds.refresh(Request())
                stale = False
            except GoogleAuthError as e:
                logger.warning(f"Token refresh failed: {e}")

        if stale:
            if not interactive:
                raise UnauthorizedError("No valid cached credential; interactive sign-in needed")
            creds = self._consent()

        if renewed:
            self._store(creds)
        self._creds = creds
        self._force_refresh = False
        return creds.token

    def invalidate(self, token: str):
        """Drop the cached credential so the next acquire() refreshes it."""
        if self._creds is not None and self._creds.token != token:
            return
        logger.debug("Dropping cached Google credential")
        self._creds = None
        self._force_refresh = True
