"""Client for the backing server's OAuth API.

The student portal server keeps the classroom grant on the user's behalf.
It exposes three JSON endpoints, each answering ``{"status": bool,
"message": str}``:

- ``POST /oauth/tokens``: associate tokens with a user
- ``POST /oauth/revoke``: drop the user's grant
- ``POST /oauth/status``: whether the user currently has a grant
"""

import logging
from typing import Any

import httpx

from .errors import MalformedResponseError, ProviderError
from .http import create_http_client, json_body, send

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://tama.qaq.tw"

TOKENS_PATH = "/oauth/tokens"
REVOKE_PATH = "/oauth/revoke"
STATUS_PATH = "/oauth/status"


def _status_field(data: Any, action: str) -> tuple[bool, str]:
    """Pull ``status``/``message`` out of a backing server response."""
    if not isinstance(data, dict) or not isinstance(data.get("status"), bool):
        raise MalformedResponseError(f"{action.capitalize()} response missing status field")

    message = data.get("message")
    return data["status"], message if isinstance(message, str) else "No message"


class BackendClient:
    """Backing server OAuth API.

    Implements the token registrar, revoker and status checker interfaces
    the authorization session depends on.

    Usage:
        async with BackendClient("https://tama.qaq.tw") as backend:
            await backend.register_tokens("s1234567", access, refresh)
    """

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.server_url = server_url.rstrip("/")
        self._http = http_client or create_http_client(timeout)
        self._owns_client = http_client is None

    def _url(self, path: str) -> str:
        return f"{self.server_url}{path}"

    async def _call(self, path: str, body: dict[str, Any], action: str) -> tuple[bool, str]:
        response = await send(self._http, self._url(path), action, json=body)
        return _status_field(json_body(response, action), action)

    async def register_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None = None,
    ) -> None:
        """Associate provider tokens with a user on the backing server.

        Raises:
            NetworkError: On transport failures
            ProviderError: On HTTP errors or a ``status: false`` answer
            MalformedResponseError: If the answer has no status field
        """
        body: dict[str, Any] = {"username": user_id, "access_token": access_token}
        if refresh_token:
            body["refresh_token"] = refresh_token

        ok, message = await self._call(TOKENS_PATH, body, "token registration")
        if not ok:
            raise ProviderError(f"Server rejected tokens: {message}")

        logger.debug(f"Tokens registered for {user_id}: {message}")

    async def revoke(self, user_id: str) -> None:
        """Drop the user's classroom grant on the backing server.

        Raises:
            NetworkError: On transport failures
            ProviderError: On HTTP errors or a ``status: false`` answer
            MalformedResponseError: If the answer has no status field
        """
        ok, message = await self._call(REVOKE_PATH, {"username": user_id}, "revocation")
        if not ok:
            raise ProviderError(f"Server refused revocation: {message}")

        logger.debug(f"Grant revoked for {user_id}: {message}")

    async def check_status(self, user_id: str) -> bool:
        """Ask the backing server whether the user has an active grant."""
        linked, message = await self._call(STATUS_PATH, {"username": user_id}, "status check")
        logger.debug(f"Link status for {user_id}: {linked} ({message})")
        return linked

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
