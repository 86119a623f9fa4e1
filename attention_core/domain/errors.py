"""Error taxonomy of the fanout core."""

import asyncio
from typing import Optional

from sqlalchemy import exc as sa_exc


class FanoutError(Exception):
    """Base class for every error the core raises on purpose."""


class BadInputError(FanoutError):
    """Malformed event or body. Fails the event permanently."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class TransientError(FanoutError):
    """Lock contention, timeouts or network blips. Safe to retry."""


class IntegrityViolationError(FanoutError):
    """A unique or foreign key violation other than the expected dedup conflict."""


class DownstreamError(FanoutError):
    """An external system such as Slack refused the request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FatalError(FanoutError):
    """The store is unreachable. The process must stop accepting events."""


class NotFoundError(FanoutError):
    """The requested inbox item does not exist for this user."""


class StaleStateError(FanoutError):
    """The item is in a state that forbids the requested transition."""


_CONTENTION_MARKERS = (
    "locked",
    "deadlock",
    "could not serialize",
    "lock timeout",
    "canceling statement",
)


def classify_store_error(error: Exception) -> FanoutError:
    """Map a SQLAlchemy/driver exception onto the taxonomy."""
    if isinstance(error, FanoutError):
        return error
    if isinstance(error, sa_exc.IntegrityError):
        return IntegrityViolationError(str(error.orig or error))
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return FatalError(f"Store connection lost: {error.orig}")
    if isinstance(error, sa_exc.InterfaceError):
        return FatalError(f"Store unreachable: {error.orig}")
    if isinstance(error, sa_exc.OperationalError):
        message = str(error.orig or error).lower()
        if any(marker in message for marker in _CONTENTION_MARKERS):
            return TransientError(message)
        if "unable to open" in message or "connection refused" in message:
            return FatalError(message)
        return TransientError(message)
    if isinstance(error, (sa_exc.DBAPIError, sa_exc.TimeoutError)):
        return TransientError(str(error))
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return TransientError("Store operation timed out")
    if isinstance(error, (ConnectionError, OSError)):
        return FatalError(f"Store unreachable: {error}")
    return TransientError(str(error))
