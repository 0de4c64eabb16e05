"""Authorization request construction.

Builds the provider authorization URL the presenter opens in a browser or
web view. All validation happens here, before any network interaction.
"""

import logging
import secrets
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlencode, urlparse

from .errors import InvalidConfigurationError
from .pkce import PKCEPair, RandomBytes, generate_state

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"

# Query parameters owned by the flow itself; extra params may not replace them
RESERVED_PARAMS = frozenset(
    {
        "client_id",
        "redirect_uri",
        "response_type",
        "scope",
        "state",
        "code_challenge",
        "code_challenge_method",
    }
)


@dataclass(frozen=True)
class AuthorizationRequest:
    """One authorization attempt's request parameters.

    The ``state`` value must be matched against the redirect before the
    returned code is trusted.
    """

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    state: str
    code_challenge: str
    code_challenge_method: str = "S256"
    extra_params: tuple[tuple[str, str], ...] = field(default=())

    @property
    def scope(self) -> str:
        """Space-separated scope string as sent on the wire."""
        return " ".join(self.scopes)

    def query_params(self) -> list[tuple[str, str]]:
        """Query parameters in wire order."""
        params = [
            ("client_id", self.client_id),
            ("redirect_uri", self.redirect_uri),
            ("response_type", "code"),
            ("scope", self.scope),
            ("state", self.state),
            ("code_challenge", self.code_challenge),
            ("code_challenge_method", self.code_challenge_method),
        ]
        params.extend(self.extra_params)
        return params

    @property
    def url(self) -> str:
        """Complete authorization URL."""
        separator = "&" if urlparse(self.authorization_endpoint).query else "?"
        return f"{self.authorization_endpoint}{separator}{urlencode(self.query_params())}"


def _normalize_scopes(scopes: Iterable[str]) -> tuple[str, ...]:
    """Strip, drop empties and de-duplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for scope in scopes:
        scope = scope.strip()
        if scope:
            seen.setdefault(scope, None)
    return tuple(seen)


def build_authorization_request(
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[str],
    pkce: PKCEPair,
    authorization_endpoint: str = GOOGLE_AUTHORIZATION_ENDPOINT,
    extra_params: Mapping[str, str] | None = None,
    state: str | None = None,
    random_bytes: RandomBytes = secrets.token_bytes,
) -> AuthorizationRequest:
    """Build the authorization request for one attempt.

    Args:
        client_id: OAuth client ID registered with the provider
        redirect_uri: Redirect URI registered for the client
        scopes: Scopes to request
        pkce: Fresh PKCE pair for this attempt
        authorization_endpoint: Provider authorization endpoint (HTTPS)
        extra_params: Additional provider-specific query parameters
        state: Explicit state nonce; generated when omitted
        random_bytes: Secure byte source for the state nonce

    Returns:
        AuthorizationRequest ready to be presented

    Raises:
        InvalidConfigurationError: If the client configuration is unusable
        CryptoUnavailableError: If the state nonce cannot be generated
    """
    if not client_id or not client_id.strip():
        raise InvalidConfigurationError("client_id must not be empty")

    if not redirect_uri or not redirect_uri.strip():
        raise InvalidConfigurationError("redirect_uri must not be empty")

    normalized_scopes = _normalize_scopes(scopes)
    if not normalized_scopes:
        raise InvalidConfigurationError("At least one scope must be requested")

    if urlparse(authorization_endpoint).scheme != "https":
        raise InvalidConfigurationError(
            f"Authorization endpoint must use HTTPS: {authorization_endpoint}"
        )

    if pkce.consumed:
        raise InvalidConfigurationError("PKCE pair has already been used")

    extras = tuple((extra_params or {}).items())
    overridden = sorted(name for name, _ in extras if name in RESERVED_PARAMS)
    if overridden:
        raise InvalidConfigurationError(
            f"Extra authorization parameters may not override: {', '.join(overridden)}"
        )

    request = AuthorizationRequest(
        authorization_endpoint=authorization_endpoint,
        client_id=client_id.strip(),
        redirect_uri=redirect_uri.strip(),
        scopes=normalized_scopes,
        state=state or generate_state(random_bytes),
        code_challenge=pkce.challenge,
        code_challenge_method=pkce.method,
        extra_params=extras,
    )

    logger.debug(
        f"Built authorization request for client {request.client_id} "
        f"({len(request.scopes)} scopes)"
    )
    return request
