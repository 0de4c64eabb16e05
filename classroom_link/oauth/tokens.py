"""OAuth token data structures.

The engine holds a ``TokenPair`` only long enough to hand it to the token
registrar; secrets are kept out of ``repr`` so they never end up in logs.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import MalformedResponseError, RegistrationFailedError

logger = logging.getLogger(__name__)


@dataclass
class TokenPair:
    """Access and refresh token obtained from one code exchange.

    Attributes:
        access_token: The access token string
        refresh_token: The refresh token string
        obtained_at: When the exchange completed (UTC)
        token_type: Token type (typically "Bearer")
        expires_in: Access token lifetime in seconds, if reported
        scope: Space-separated list of granted scopes, if reported
    """

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    obtained_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None

    @classmethod
    def from_token_response(cls, response: Any) -> "TokenPair":
        """Create a TokenPair from a token endpoint JSON body.

        Args:
            response: Decoded JSON from the token endpoint

        Returns:
            TokenPair instance

        Raises:
            MalformedResponseError: If either token is missing or not a string
        """
        if not isinstance(response, dict):
            raise MalformedResponseError("Token response is not a JSON object")

        missing = [
            name
            for name in ("access_token", "refresh_token")
            if not isinstance(response.get(name), str) or not response[name]
        ]
        if missing:
            raise MalformedResponseError(
                f"Token response missing {', '.join(missing)}"
            )

        expires_in = None
        if "expires_in" in response:
            try:
                expires_in = int(response["expires_in"])
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric expires_in in token response")

        return cls(
            access_token=response["access_token"],
            refresh_token=response["refresh_token"],
            token_type=response.get("token_type", "Bearer"),
            expires_in=expires_in,
            scope=response.get("scope"),
        )


@dataclass(frozen=True)
class ExchangeResult:
    """What the session learns from a successful exchange.

    Carries no raw tokens; those leave the engine through the registrar.
    """

    obtained_at: datetime
    scope: str | None = None
    registration_error: RegistrationFailedError | None = None

    @property
    def registered(self) -> bool:
        return self.registration_error is None
