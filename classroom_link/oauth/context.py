"""Composition root for authorization sessions.

Owns the shared HTTP client and the backing-server client, and hands out one
``AuthorizationSession`` per user identity. Pass it explicitly to whatever
needs a session; there is no module-level instance.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import httpx

from .backend import BackendClient
from .errors import InvalidConfigurationError
from .events import AuthorizationEvent, AuthorizationOutcome, NotificationBus, RevocationOutcome, StatusChanged
from .exchange import TokenExchangeClient
from .http import create_http_client
from .revocation import RevocationClient
from .session import AuthorizationSession

if TYPE_CHECKING:
    from ..config import Config
    from ..store import UserStore

logger = logging.getLogger(__name__)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 60:
        return f"{max(total_seconds, 0)} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    if days < 14:
        return f"{days} day{'s' if days != 1 else ''}"

    weeks = days // 7
    return f"{weeks} week{'s' if weeks != 1 else ''}"


def format_time_ago(dt: datetime) -> str:
    """Format a datetime as time ago from now, e.g. "3 hours ago"."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return _format_timedelta(datetime.now(timezone.utc) - dt) + " ago"


class AuthorizationContext:
    """Builds and tracks authorization sessions.

    Usage:
        async with AuthorizationContext(config, user_store=UserStore()) as ctx:
            session = ctx.current_session()
            outcome = await session.authorize(presenter)
    """

    def __init__(
        self,
        config: "Config",
        user_store: "UserStore | None" = None,
        http_client: httpx.AsyncClient | None = None,
        bus: NotificationBus | None = None,
        verify_state: bool = True,
    ):
        """Initialize the context.

        Args:
            config: Loaded configuration (OAuth and server settings)
            user_store: Where the current user and link status live
            http_client: Shared HTTP client (created and owned if not provided)
            bus: Notification bus shared by every session
            verify_state: Passed to each session
        """
        self.config = config
        self.user_store = user_store
        self.bus = bus or NotificationBus()
        self.verify_state = verify_state

        self._owns_client = http_client is None
        self.http_client = http_client or create_http_client(config.server.timeout)

        self.backend = BackendClient(config.server.url, http_client=self.http_client)
        self.exchange_client = TokenExchangeClient(
            client_id=config.oauth.client_id,
            registrar=self.backend,
            token_endpoint=config.oauth.token_endpoint,
            client_secret=config.oauth.client_secret,
            http_client=self.http_client,
        )
        self.revocation_client = RevocationClient(self.backend)

        self._sessions: dict[str, AuthorizationSession] = {}
        self._unsubscribe = (
            self.bus.subscribe(self._record_status) if user_store is not None else None
        )

    def _last_known_authorized(self, user_id: str) -> bool:
        if self.user_store is None:
            return False
        status = self.user_store.get_link_status(user_id)
        return bool(status and status.authorized)

    def session_for(self, user_id: str) -> AuthorizationSession:
        """Return the session for ``user_id``, creating it on first use.

        A new session starts AUTHORIZED if the user store remembers a link.
        """
        if not user_id:
            raise InvalidConfigurationError("User ID must not be empty")

        session = self._sessions.get(user_id)
        if session is None:
            session = AuthorizationSession(
                settings=self.config.oauth,
                exchange_client=self.exchange_client,
                revocation_client=self.revocation_client,
                bus=self.bus,
                user_id=user_id,
                status_checker=self.backend,
                authorized=self._last_known_authorized(user_id),
                verify_state=self.verify_state,
            )
            self._sessions[user_id] = session
            logger.debug(f"Created authorization session for {user_id}")
        return session

    def current_session(self) -> AuthorizationSession:
        """Return the session for the user signed in to the portal.

        Raises:
            InvalidConfigurationError: If no user is signed in
        """
        user_id = self.user_store.get_user_id() if self.user_store else None
        if not user_id:
            raise InvalidConfigurationError(
                "No portal user is signed in. Run 'classroom-link user set <USER_ID>' first."
            )
        return self.session_for(user_id)

    def status_info(self, user_id: str) -> dict[str, Any]:
        """Non-sensitive status summary for display."""
        session = self.session_for(user_id)
        info: dict[str, Any] = {
            "user_id": user_id,
            "status": session.status.value,
            "authorized": session.is_authorized,
            "last_error": session.last_error.to_dict() if session.last_error else None,
            "updated_at": None,
            "updated_ago_human": None,
        }

        stored = self.user_store.get_link_status(user_id) if self.user_store else None
        if stored is not None:
            info["updated_at"] = stored.updated_at.isoformat()
            info["updated_ago_human"] = format_time_ago(stored.updated_at)
        return info

    def _record_status(self, event: AuthorizationEvent) -> None:
        """Persist link status changes to the user store."""
        if self.user_store is None or not event.user_id:
            return

        if isinstance(event, AuthorizationOutcome):
            if not event.authorized:
                return
            authorized = True
        elif isinstance(event, RevocationOutcome):
            authorized = False
        elif isinstance(event, StatusChanged):
            authorized = event.authorized
        else:
            return

        self.user_store.set_link_status(event.user_id, authorized)

    async def aclose(self) -> None:
        """Detach from the bus and close the HTTP client if we own it."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "AuthorizationContext":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
