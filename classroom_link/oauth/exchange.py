"""Authorization code exchange.

Redeems an authorization code plus PKCE verifier at the provider's token
endpoint, then forwards the resulting tokens to the backing server.
"""

import logging
from typing import Any, Protocol

import httpx

from .errors import AuthorizationError, RegistrationFailedError
from .http import create_http_client, json_body, send
from .tokens import ExchangeResult, TokenPair

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"


class TokenRegistrar(Protocol):
    """Persists tokens server-side for a user."""

    async def register_tokens(
        self, user_id: str, access_token: str, refresh_token: str | None = None
    ) -> None: ...


async def exchange_code_for_tokens(
    token_endpoint: str,
    client_id: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    http_client: httpx.AsyncClient,
    client_secret: str | None = None,
) -> TokenPair:
    """Exchange an authorization code for tokens.

    Args:
        token_endpoint: Provider token endpoint
        client_id: OAuth client ID
        code: Authorization code from the redirect
        redirect_uri: The redirect URI used in the authorization request
        code_verifier: PKCE code verifier (never the challenge)
        http_client: HTTP client to send with
        client_secret: Secret for confidential clients only

    Returns:
        TokenPair parsed from the token response

    Raises:
        NetworkError: On transport failures
        ProviderError: On HTTP 4xx/5xx
        MalformedResponseError: If either token is missing from the response
    """
    token_request: dict[str, str] = {
        "client_id": client_id,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }

    if client_secret:
        token_request["client_secret"] = client_secret

    response = await send(
        http_client,
        token_endpoint,
        "token exchange",
        data=token_request,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    return TokenPair.from_token_response(json_body(response, "token exchange"))


class TokenExchangeClient:
    """Performs the code→token exchange and the token→server registration.

    Usage:
        client = TokenExchangeClient(client_id, registrar, http_client=http)
        result = await client.exchange(code, verifier, redirect_uri, user_id)
        if not result.registered:
            log(result.registration_error)
    """

    def __init__(
        self,
        client_id: str,
        registrar: TokenRegistrar,
        token_endpoint: str = GOOGLE_TOKEN_ENDPOINT,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.token_endpoint = token_endpoint
        self.registrar = registrar
        self._client_secret = client_secret
        self._http = http_client or create_http_client(timeout)
        self._owns_client = http_client is None

    async def exchange(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
        user_id: str | None,
    ) -> ExchangeResult:
        """Redeem the code and register the resulting tokens.

        A registration failure does not undo the provider grant: it is
        returned as ``ExchangeResult.registration_error``.

        Raises:
            NetworkError, ProviderError, MalformedResponseError: If the
                provider exchange itself fails
        """
        tokens = await exchange_code_for_tokens(
            self.token_endpoint,
            self.client_id,
            code,
            redirect_uri,
            code_verifier,
            self._http,
            client_secret=self._client_secret,
        )
        logger.debug("Authorization code exchanged for tokens")

        registration_error = await self._register(user_id, tokens)

        return ExchangeResult(
            obtained_at=tokens.obtained_at,
            scope=tokens.scope,
            registration_error=registration_error,
        )

    async def _register(
        self, user_id: str | None, tokens: TokenPair
    ) -> RegistrationFailedError | None:
        if not user_id:
            logger.warning("No current user; tokens were not registered with the server")
            return RegistrationFailedError("No current user to register tokens for")

        try:
            await self.registrar.register_tokens(
                user_id, tokens.access_token, tokens.refresh_token
            )
        except AuthorizationError as e:
            logger.warning(f"Token registration failed for {user_id}: {e}")
            error = RegistrationFailedError(f"Token registration failed: {e}")
            error.__cause__ = e
            return error

        return None

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "TokenExchangeClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
