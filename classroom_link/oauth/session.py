"""Authorization session state machine.

One ``AuthorizationSession`` exists per user identity. It owns the lifecycle
of linking that user's account to Google Classroom:

    IDLE ──start──▶ AUTHORIZING ──code──▶ EXCHANGING ──ok──▶ AUTHORIZED
      ▲                 │                     │                  │
      └────cancel───────┘                     └─fail─▶ FAILED ─┐ revoke
      ▲                                                        │  ▼
      └────────────────────────────────────────────────────────┴ REVOKING

FAILED is transient: observers are notified while the session is FAILED and
it then settles in IDLE. All mutation goes through the public methods; the
session is meant to be driven from a single event loop.

Each attempt gets an id. Network completions are applied only if their
attempt is still current, so a ``reset()`` while a token exchange is in
flight discards the exchange's result.
"""

import hmac
import logging
import secrets
from enum import Enum
from typing import Protocol

from .callback import AuthorizationPresenter, CallbackResult, parse_callback_url
from .errors import (
    AlreadyAuthorizedError,
    AlreadyInProgressError,
    AuthorizationDeniedError,
    AuthorizationError,
    InvalidConfigurationError,
    InvalidTransitionError,
    MalformedResponseError,
    NotAuthorizedError,
    StateMismatchError,
)
from .events import AuthorizationOutcome, NotificationBus, RevocationOutcome, StatusChanged
from .pkce import PKCEPair, RandomBytes, generate_pkce_pair
from .request import AuthorizationRequest, build_authorization_request
from .revocation import RevocationClient
from .settings import OAuthSettings
from .tokens import ExchangeResult

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Lifecycle states of an authorization session."""

    IDLE = "idle"
    AUTHORIZING = "authorizing"
    EXCHANGING = "exchanging"
    AUTHORIZED = "authorized"
    FAILED = "failed"
    REVOKING = "revoking"


# Allowed edges. reset() is the only way around this table.
TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.AUTHORIZING, SessionStatus.AUTHORIZED}),
    SessionStatus.AUTHORIZING: frozenset(
        {SessionStatus.EXCHANGING, SessionStatus.IDLE, SessionStatus.FAILED}
    ),
    SessionStatus.EXCHANGING: frozenset({SessionStatus.AUTHORIZED, SessionStatus.FAILED}),
    SessionStatus.AUTHORIZED: frozenset({SessionStatus.REVOKING, SessionStatus.IDLE}),
    SessionStatus.FAILED: frozenset({SessionStatus.IDLE}),
    SessionStatus.REVOKING: frozenset({SessionStatus.IDLE}),
}

IN_PROGRESS = frozenset(
    {SessionStatus.AUTHORIZING, SessionStatus.EXCHANGING, SessionStatus.REVOKING}
)


class ExchangeClient(Protocol):
    """Redeems a code and registers the tokens."""

    async def exchange(
        self, code: str, code_verifier: str, redirect_uri: str, user_id: str | None
    ) -> ExchangeResult: ...


class StatusChecker(Protocol):
    """Reports whether the backing server holds a grant for a user."""

    async def check_status(self, user_id: str) -> bool: ...


class AuthorizationSession:
    """Drives the OAuth2 authorization-code + PKCE flow for one user.

    Starting an attempt while another is in flight is rejected with
    ``AlreadyInProgressError``; the caller cancels first if it wants to
    restart.

    Usage:
        session = AuthorizationSession(settings, exchange_client, revocation_client,
                                       bus=bus, user_id="s1234567")
        url = session.start_authorization()
        # ... presenter shows url, provider redirects back ...
        outcome = await session.handle_redirect(redirect_url)
    """

    def __init__(
        self,
        settings: OAuthSettings,
        exchange_client: ExchangeClient,
        revocation_client: RevocationClient,
        bus: NotificationBus | None = None,
        user_id: str | None = None,
        status_checker: StatusChecker | None = None,
        authorized: bool = False,
        verify_state: bool = True,
        random_bytes: RandomBytes = secrets.token_bytes,
    ):
        """Initialize the session.

        Args:
            settings: Provider client configuration
            exchange_client: Performs the code exchange and token registration
            revocation_client: Performs remote revocation
            bus: Where outcomes are published
            user_id: Identity this session belongs to
            status_checker: Backing server status query, for refresh_status()
            authorized: Start in AUTHORIZED (restored from persisted status)
            verify_state: Require the redirect's state to match the request
            random_bytes: Secure random source for PKCE and state
        """
        self.settings = settings
        self.user_id = user_id
        self.bus = bus or NotificationBus()
        self.verify_state = verify_state

        self._exchange_client = exchange_client
        self._revocation_client = revocation_client
        self._status_checker = status_checker
        self._random_bytes = random_bytes

        self._status = SessionStatus.AUTHORIZED if authorized else SessionStatus.IDLE
        self._attempt_id = 0
        self._pending_request: AuthorizationRequest | None = None
        self._pkce: PKCEPair | None = None
        self._last_error: AuthorizationError | None = None

    # Read-only state

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_authorized(self) -> bool:
        return self._status is SessionStatus.AUTHORIZED

    @property
    def pending_request(self) -> AuthorizationRequest | None:
        return self._pending_request

    @property
    def last_error(self) -> AuthorizationError | None:
        return self._last_error

    @property
    def attempt_id(self) -> int:
        return self._attempt_id

    # Transitions

    def _transition(self, target: SessionStatus) -> None:
        if target not in TRANSITIONS[self._status]:
            raise InvalidTransitionError(
                f"Illegal session transition {self._status.value} -> {target.value}"
            )
        logger.debug(f"Session {self.user_id}: {self._status.value} -> {target.value}")
        self._status = target

    def _discard_attempt(self) -> None:
        self._pending_request = None
        self._pkce = None

    def _publish(self, event: AuthorizationOutcome | RevocationOutcome | StatusChanged) -> None:
        self.bus.publish(event)

    def start_authorization(self) -> str:
        """Begin an attempt and return the URL for the presenter.

        Raises:
            AlreadyInProgressError: If an attempt or revocation is running
            AlreadyAuthorizedError: If the session already holds a grant
            InvalidConfigurationError: If the client configuration is unusable
            CryptoUnavailableError: If secure randomness is unavailable
        """
        if self._status in IN_PROGRESS:
            raise AlreadyInProgressError(
                f"Authorization already in progress ({self._status.value})"
            )
        if self._status is SessionStatus.AUTHORIZED:
            raise AlreadyAuthorizedError("Google Classroom is already linked; revoke first")

        pkce = generate_pkce_pair(random_bytes=self._random_bytes)
        request = build_authorization_request(
            client_id=self.settings.client_id,
            redirect_uri=self.settings.redirect_uri,
            scopes=self.settings.scopes,
            pkce=pkce,
            authorization_endpoint=self.settings.authorization_endpoint,
            extra_params=self.settings.extra_authorization_params,
            random_bytes=self._random_bytes,
        )

        self._attempt_id += 1
        self._pkce = pkce
        self._pending_request = request
        self._last_error = None
        self._transition(SessionStatus.AUTHORIZING)

        logger.info(f"Started classroom authorization attempt {self._attempt_id}")
        return request.url

    def cancel_authorization(self) -> bool:
        """Abandon the pending attempt.

        Returns:
            True if an attempt was cancelled, False if there was nothing to cancel
        """
        if self._status is not SessionStatus.AUTHORIZING:
            return False

        self._discard_attempt()
        self._transition(SessionStatus.IDLE)
        logger.info(f"Authorization attempt {self._attempt_id} cancelled")
        self._publish(
            AuthorizationOutcome(
                user_id=self.user_id,
                attempt_id=self._attempt_id,
                authorized=False,
                cancelled=True,
            )
        )
        return True

    def reset(self) -> None:
        """Return to IDLE from any state, invalidating in-flight work.

        Used when the portal user signs out. Results of an exchange or
        revocation still in flight are discarded when they complete.
        """
        self._attempt_id += 1
        self._discard_attempt()
        if self._status is not SessionStatus.IDLE:
            logger.debug(f"Session {self.user_id}: reset from {self._status.value}")
        self._status = SessionStatus.IDLE

    def _fail(self, error: AuthorizationError) -> AuthorizationOutcome:
        """Move through FAILED to IDLE, notifying observers on the way."""
        logger.warning(f"Authorization attempt {self._attempt_id} failed: {error}")
        self._last_error = error
        self._discard_attempt()
        self._transition(SessionStatus.FAILED)

        outcome = AuthorizationOutcome(
            user_id=self.user_id,
            attempt_id=self._attempt_id,
            authorized=False,
            error=error,
        )
        self._publish(outcome)
        self._transition(SessionStatus.IDLE)
        return outcome

    def _is_current(self, attempt_id: int, status: SessionStatus) -> bool:
        return attempt_id == self._attempt_id and self._status is status

    def _state_matches(self, state: str | None) -> bool:
        if self._pending_request is None:
            return False
        if not self.verify_state:
            logger.warning("State verification disabled; accepting redirect unchecked")
            return True
        if state is None:
            return False
        return hmac.compare_digest(
            state.encode("utf-8"), self._pending_request.state.encode("utf-8")
        )

    async def receive_code(
        self, code: str, state: str | None = None
    ) -> AuthorizationOutcome | None:
        """Exchange an authorization code returned by the provider.

        Codes that arrive while no attempt is pending (after a cancel, or
        unsolicited) are ignored.

        Args:
            code: Authorization code from the redirect
            state: State parameter from the redirect

        Returns:
            The attempt's outcome, or None if the code was ignored or the
            attempt was reset while the exchange was in flight
        """
        if self._status is not SessionStatus.AUTHORIZING or self._pending_request is None:
            logger.warning(
                f"Ignoring authorization code: session is {self._status.value}"
            )
            return None

        if not self._state_matches(state):
            return self._fail(
                StateMismatchError("State mismatch in redirect - possible CSRF attack")
            )

        if not code:
            return self._fail(MalformedResponseError("Redirect carried an empty authorization code"))

        attempt_id = self._attempt_id
        redirect_uri = self._pending_request.redirect_uri
        # The verifier is single-use; the pair is wiped before the request goes out
        verifier = self._pkce.consume() if self._pkce else ""
        self._pkce = None
        self._transition(SessionStatus.EXCHANGING)

        try:
            result = await self._exchange_client.exchange(
                code, verifier, redirect_uri, self.user_id
            )
        except AuthorizationError as e:
            if not self._is_current(attempt_id, SessionStatus.EXCHANGING):
                logger.info(f"Discarding failed exchange for stale attempt {attempt_id}")
                return None
            return self._fail(e)
        except BaseException:
            # Cancelled task or unexpected bug: never leave the session stuck
            if self._is_current(attempt_id, SessionStatus.EXCHANGING):
                self.reset()
            raise
        finally:
            del verifier

        if not self._is_current(attempt_id, SessionStatus.EXCHANGING):
            logger.info(f"Discarding exchange result for stale attempt {attempt_id}")
            return None

        self._discard_attempt()
        self._transition(SessionStatus.AUTHORIZED)

        outcome = AuthorizationOutcome(
            user_id=self.user_id,
            attempt_id=attempt_id,
            authorized=True,
            warning=result.registration_error,
        )
        if result.registration_error:
            logger.warning(
                f"Classroom linked but not registered with the server: {result.registration_error}"
            )
        else:
            logger.info(f"Classroom authorization succeeded for {self.user_id}")

        self._publish(outcome)
        return outcome

    async def handle_callback(self, result: CallbackResult) -> AuthorizationOutcome | None:
        """Route a parsed redirect to the exchange or the denial path."""
        if self._status is not SessionStatus.AUTHORIZING:
            logger.warning(f"Ignoring redirect: session is {self._status.value}")
            return None

        if result.error:
            return self._fail(AuthorizationDeniedError(result.error, result.error_description))

        if not result.code:
            return self._fail(
                MalformedResponseError("Redirect carried neither a code nor an error")
            )

        return await self.receive_code(result.code, result.state)

    async def handle_redirect(self, url: str) -> AuthorizationOutcome | None:
        """Handle the full redirect URL the presenter intercepted."""
        return await self.handle_callback(parse_callback_url(url))

    async def authorize(self, presenter: AuthorizationPresenter) -> AuthorizationOutcome:
        """Run a whole attempt through a presenter.

        Raises:
            The synchronous errors of ``start_authorization()``
        """
        url = self.start_authorization()
        attempt_id = self._attempt_id

        try:
            result = await presenter.present(url)
        except BaseException:
            if self._is_current(attempt_id, SessionStatus.AUTHORIZING):
                self.cancel_authorization()
            raise

        if result is None:
            self.cancel_authorization()
            outcome = None
        else:
            outcome = await self.handle_callback(result)

        if outcome is None:
            # Cancelled by the user, or superseded by reset()
            return AuthorizationOutcome(
                user_id=self.user_id,
                attempt_id=attempt_id,
                authorized=False,
                cancelled=True,
            )
        return outcome

    async def revoke(self, user_id: str | None = None) -> RevocationOutcome:
        """Revoke the grant. Local state is cleared whether or not the server agrees.

        Args:
            user_id: User to revoke for; defaults to the session's user and
                must match it when the session is bound to one

        Returns:
            RevocationOutcome, with ``error`` set if the remote call failed

        Raises:
            InvalidConfigurationError: If ``user_id`` names a different user
            AlreadyInProgressError: If a revocation is already running
            NotAuthorizedError: If there is no active grant (no network call is made)
        """
        if user_id and self.user_id and user_id != self.user_id:
            raise InvalidConfigurationError(
                f"Session for {self.user_id} cannot revoke the grant of {user_id}"
            )
        if self._status is SessionStatus.REVOKING:
            raise AlreadyInProgressError("Revocation already in progress")
        if self._status is not SessionStatus.AUTHORIZED:
            raise NotAuthorizedError("Google Classroom is not linked")

        target = user_id or self.user_id
        attempt_id = self._attempt_id
        self._transition(SessionStatus.REVOKING)

        error: AuthorizationError | None = None
        try:
            if not target:
                raise InvalidConfigurationError("No user to revoke authorization for")
            await self._revocation_client.revoke(target)
        except AuthorizationError as e:
            logger.warning(f"Remote revocation failed, clearing local grant anyway: {e}")
            error = e
        finally:
            if self._is_current(attempt_id, SessionStatus.REVOKING):
                self._transition(SessionStatus.IDLE)

        self._last_error = error
        outcome = RevocationOutcome(user_id=target or "", error=error)
        self._publish(outcome)
        return outcome

    async def refresh_status(self) -> bool:
        """Sync the local authorized flag with the backing server.

        Only acts while IDLE or AUTHORIZED; an attempt in flight is left alone.

        Returns:
            Whether the session is authorized afterwards

        Raises:
            NetworkError, ProviderError, MalformedResponseError: If the
                status query fails (local state is left unchanged)
        """
        if self._status not in (SessionStatus.IDLE, SessionStatus.AUTHORIZED):
            return self.is_authorized
        if self._status_checker is None or not self.user_id:
            logger.debug("No status checker or user; keeping local status")
            return self.is_authorized

        linked = await self._status_checker.check_status(self.user_id)

        if linked and self._status is SessionStatus.IDLE:
            self._transition(SessionStatus.AUTHORIZED)
        elif not linked and self._status is SessionStatus.AUTHORIZED:
            self._transition(SessionStatus.IDLE)
        else:
            return self.is_authorized

        logger.info(f"Server reports classroom link for {self.user_id}: {linked}")
        self._publish(StatusChanged(user_id=self.user_id, authorized=linked))
        return self.is_authorized
