"""
Tagged outcomes for remote calls.
"""

from dataclasses import dataclass
from typing import Any

from subly_sync.models import CalendarSyncError
from subly_sync.models import NotFoundError
from subly_sync.models import UnauthorizedError

OK = "ok"
NOT_FOUND = "not_found"
ERROR = "error"


@dataclass
class Outcome:
    """Result of one remote call: a status tag plus the value or the error."""

    status: str
    value: Any = None
    error: CalendarSyncError | None = None

    @property
    def ok(self) -> bool:
        return self.status == OK

    @property
    def unauthorized(self) -> bool:
        return isinstance(self.error, UnauthorizedError)

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""


def attempt(fn, *args, **kwargs) -> Outcome:
    """Run a remote call and classify its result instead of raising.

    Only CalendarSyncError subclasses are classified; anything else is a
    programming error and propagates.
    """
    try:
        return Outcome(OK, value=fn(*args, **kwargs))
    except NotFoundError as e:
        return Outcome(NOT_FOUND, error=e)
    except CalendarSyncError as e:
        return Outcome(ERROR, error=e)


def not_found(message: str) -> Outcome:
    return Outcome(NOT_FOUND, error=NotFoundError(message))
