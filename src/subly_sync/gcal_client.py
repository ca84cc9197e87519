"""
Google Calendar API v3 wrapper implementing the remote event store contract.
"""

import logging

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.exceptions import TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from subly_sync.models import NotFoundError
from subly_sync.models import RemoteStoreError
from subly_sync.models import UnauthorizedError

logger = logging.getLogger(__name__)

_NOT_FOUND_STATUSES = (404, 410)
_UNAUTHORIZED_STATUSES = (401, 403)


def http_status(e: HttpError) -> int | None:
    status = getattr(e, "status_code", None) or getattr(getattr(e, "resp", None), "status", None)
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


def translate_error(e: Exception, action: str) -> Exception:
    """Map a Google client failure to the store's error taxonomy."""
    if isinstance(e, HttpError):
        status = http_status(e)
        if status in _NOT_FOUND_STATUSES:
            return NotFoundError(f"{action}: not found")
        if status in _UNAUTHORIZED_STATUSES:
            return UnauthorizedError(f"{action}: unauthorized ({status})")
        return RemoteStoreError(f"{action}: HTTP {status}: {e}")
    return RemoteStoreError(f"{action}: {e}")


class GoogleCalendarStore:
    """Remote event store backed by the Google Calendar API.

    Every method takes the bearer ``token`` to use; a service object is
    built per token and reused until the token changes.
    """

    def __init__(self):
        self._service = None
        self._service_token: str | None = None

    def _events(self, token: str):
        return self._svc(token).events()

    def _svc(self, token: str):
        if self._service is None or self._service_token != token:
            self._service = build(
                "calendar", "v3", credentials=Credentials(token), cache_discovery=False
            )
            self._service_token = token
        return self._service

    def _execute(self, request, action: str):
        try:
            return request.execute()
        except TransportError as e:
            raise RemoteStoreError(f"{action}: {e}") from e
        except GoogleAuthError as e:
            # A bare access token cannot be refreshed, so a 401 surfaces as RefreshError.
            raise UnauthorizedError(f"{action}: unauthorized ({e})") from e
        except (HttpError, httplib2.HttpLib2Error, OSError) as e:
            raise translate_error(e, action) from e

    def create(self, calendar_id: str, body: dict, token: str) -> str:
        """Insert an event and return its server-assigned id."""
        created = self._execute(
            self._events(token).insert(calendarId=calendar_id, body=body),
            f"create event in {calendar_id}",
        )
        logger.debug(f"Created event {created['id']} in {calendar_id}")
        return created["id"]

    def update(self, calendar_id: str, event_id: str, body: dict, token: str) -> str:
        """Patch an existing event; raises NotFoundError for an unknown id."""
        updated = self._execute(
            self._events(token).patch(calendarId=calendar_id, eventId=event_id, body=body),
            f"update event {event_id}",
        )
        return updated.get("id", event_id)

    def get(self, calendar_id: str, event_id: str, token: str) -> dict:
        event = self._execute(
            self._events(token).get(calendarId=calendar_id, eventId=event_id),
            f"get event {event_id}",
        )
        # Cancelled events are still returned by GET but no longer show up.
        if event.get("status") == "cancelled":
            raise NotFoundError(f"get event {event_id}: cancelled")
        return event

    def delete(self, calendar_id: str, event_id: str, token: str):
        """Delete an event; an already-missing event counts as deleted."""
        try:
            self._execute(
                self._events(token).delete(calendarId=calendar_id, eventId=event_id),
                f"delete event {event_id}",
            )
        except NotFoundError:
            logger.debug(f"Event {event_id} already gone from {calendar_id}")

    def ensure_named_container(self, name: str, token: str) -> str:
        """Find a writable calendar by display name (case-insensitive) or create it."""
        service = self._svc(token)
        wanted = name.strip().lower()
        page_token = None
        while True:
            listing = self._execute(
                service.calendarList().list(minAccessRole="writer", pageToken=page_token),
                "list calendars",
            )
            for item in listing.get("items", []):
                if str(item.get("summary") or "").strip().lower() == wanted and item.get("id"):
                    return item["id"]
            page_token = listing.get("nextPageToken")
            if not page_token:
                break

        created = self._execute(service.calendars().insert(body={"summary": name}), "create calendar")
        calendar_id = created["id"]
        logger.info(f"Created calendar {name!r} ({calendar_id})")

        # Owned calendars usually show up in the list on their own.
        try:
            self._execute(
                service.calendarList().insert(body={"id": calendar_id}), "add calendar to list"
            )
        except (RemoteStoreError, NotFoundError) as e:
            logger.debug(f"Could not add {calendar_id} to calendar list: {e}")
        return calendar_id
