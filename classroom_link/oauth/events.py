"""Authorization events and the in-process notification bus.

The session publishes an event on every terminal transition. Observers are
called synchronously, in subscription order, so delivery is ordered per
session. An observer that raises is logged and skipped; it never breaks
the session or the other observers.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Union

from .errors import AuthorizationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationOutcome:
    """Result of one authorization attempt.

    Attributes:
        user_id: Identity the session belongs to
        attempt_id: Attempt the outcome belongs to
        authorized: True if the provider granted access
        error: Why the attempt failed (None on success or cancellation)
        warning: Soft failure on success, e.g. registration failed
        cancelled: True if the user abandoned the attempt
    """

    user_id: str | None
    attempt_id: int
    authorized: bool
    error: AuthorizationError | None = None
    warning: AuthorizationError | None = None
    cancelled: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "attempt_id": self.attempt_id,
            "authorized": self.authorized,
            "cancelled": self.cancelled,
            "error": self.error.to_dict() if self.error else None,
            "warning": self.warning.to_dict() if self.warning else None,
        }


@dataclass(frozen=True)
class RevocationOutcome:
    """Result of a revocation. Local state is cleared either way."""

    user_id: str
    error: AuthorizationError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "succeeded": self.succeeded,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class StatusChanged:
    """The backing server reported a different link status than held locally."""

    user_id: str
    authorized: bool

    def to_dict(self) -> dict[str, object]:
        return {"user_id": self.user_id, "authorized": self.authorized}


AuthorizationEvent = Union[AuthorizationOutcome, RevocationOutcome, StatusChanged]
Observer = Callable[[AuthorizationEvent], None]


class NotificationBus:
    """Ordered observer list for authorization events.

    Usage:
        bus = NotificationBus()
        unsubscribe = bus.subscribe(lambda event: print(event))
        ...
        unsubscribe()
    """

    def __init__(self) -> None:
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a callable that removes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish(self, event: AuthorizationEvent) -> None:
        """Deliver an event to every observer in subscription order."""
        logger.debug(f"Publishing {type(event).__name__}")
        # Copy so observers may unsubscribe while being notified
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning(f"Authorization observer {observer!r} failed: {e}")

    def __len__(self) -> int:
        return len(self._observers)
