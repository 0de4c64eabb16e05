"""OAuth2 authorization-code + PKCE engine for linking Google Classroom.

The portal user authorizes read-only Classroom access; the resulting tokens
are handed to the backing server, which uses them on the user's behalf.

Main Components:
    AuthorizationContext: Builds one session per user identity
    AuthorizationSession: The authorization state machine
    BackendClient: Backing server token/revoke/status API
    BrowserPresenter: System browser + loopback redirect capture

Quick Start:
    from classroom_link.oauth import AuthorizationContext, BrowserPresenter

    async with BrowserPresenter() as presenter:
        config.oauth.redirect_uri = presenter.redirect_uri
        async with AuthorizationContext(config) as ctx:
            outcome = await ctx.session_for("s1234567").authorize(presenter)
"""

from .backend import DEFAULT_SERVER_URL, BackendClient
from .callback import (
    AuthorizationPresenter,
    BrowserPresenter,
    CallbackError,
    CallbackResult,
    CallbackTimeoutError,
    LocalhostCallbackServer,
    parse_callback_url,
)
from .context import AuthorizationContext
from .errors import (
    AlreadyAuthorizedError,
    AlreadyInProgressError,
    AuthorizationDeniedError,
    AuthorizationError,
    CryptoUnavailableError,
    ErrorKind,
    InvalidConfigurationError,
    InvalidTransitionError,
    MalformedResponseError,
    NetworkError,
    NotAuthorizedError,
    ProviderError,
    RegistrationFailedError,
    StateMismatchError,
)
from .events import AuthorizationOutcome, NotificationBus, RevocationOutcome, StatusChanged
from .exchange import GOOGLE_TOKEN_ENDPOINT, TokenExchangeClient, exchange_code_for_tokens
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair
from .request import GOOGLE_AUTHORIZATION_ENDPOINT, AuthorizationRequest, build_authorization_request
from .revocation import RevocationClient
from .session import AuthorizationSession, SessionStatus
from .settings import CLASSROOM_SCOPES, OAuthSettings
from .tokens import ExchangeResult, TokenPair

__all__ = [
    # Session (main entry point)
    "AuthorizationContext",
    "AuthorizationSession",
    "SessionStatus",
    "OAuthSettings",
    "CLASSROOM_SCOPES",
    # Events
    "AuthorizationOutcome",
    "RevocationOutcome",
    "StatusChanged",
    "NotificationBus",
    # Request and PKCE
    "AuthorizationRequest",
    "build_authorization_request",
    "GOOGLE_AUTHORIZATION_ENDPOINT",
    "PKCEPair",
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    # Exchange, revocation, backend
    "TokenExchangeClient",
    "exchange_code_for_tokens",
    "GOOGLE_TOKEN_ENDPOINT",
    "TokenPair",
    "ExchangeResult",
    "RevocationClient",
    "BackendClient",
    "DEFAULT_SERVER_URL",
    # Presenters
    "AuthorizationPresenter",
    "BrowserPresenter",
    "LocalhostCallbackServer",
    "CallbackResult",
    "CallbackError",
    "CallbackTimeoutError",
    "parse_callback_url",
    # Errors
    "ErrorKind",
    "AuthorizationError",
    "InvalidConfigurationError",
    "CryptoUnavailableError",
    "NetworkError",
    "ProviderError",
    "MalformedResponseError",
    "RegistrationFailedError",
    "AlreadyInProgressError",
    "AlreadyAuthorizedError",
    "NotAuthorizedError",
    "StateMismatchError",
    "AuthorizationDeniedError",
    "InvalidTransitionError",
]
