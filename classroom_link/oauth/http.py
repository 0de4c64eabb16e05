"""HTTP helpers shared by the token, backend and revocation clients."""

import logging
from typing import Any

import httpx

from .errors import MalformedResponseError, NetworkError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def create_http_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Create the AsyncClient used when callers do not inject one."""
    return httpx.AsyncClient(timeout=timeout)


def error_detail(response: httpx.Response) -> str:
    """Extract a safe, short description of an error response.

    Only the OAuth ``error``/``error_description`` fields (or the backing
    server's ``message``) are used; the raw body might contain secrets.
    """
    try:
        data = response.json()
    except Exception:
        return ""

    if not isinstance(data, dict):
        return ""

    if "error" in data:
        error = data.get("error", "")
        if isinstance(error, dict):
            # Google APIs nest {"error": {"status": ..., "message": ...}}
            error = error.get("status", "")
        return f": {error} - {data.get('error_description', '')}"

    if "message" in data:
        return f": {data['message']}"

    return ""


async def send(
    client: httpx.AsyncClient,
    url: str,
    action: str,
    **kwargs: Any,
) -> httpx.Response:
    """POST a request and map failures onto the engine's error taxonomy.

    Args:
        client: HTTP client to send with
        url: Target URL
        action: Human-readable name of the operation, used in messages
        **kwargs: Passed through to ``client.post`` (``data=``, ``json=``, ...)

    Returns:
        The response, guaranteed to have a status below 400

    Raises:
        NetworkError: On transport failures (timeout, DNS, TLS)
        ProviderError: On HTTP 4xx/5xx
    """
    try:
        response = await client.post(url, **kwargs)
    except httpx.RequestError as e:
        raise NetworkError(f"Network error during {action}: {e}") from e

    if response.status_code >= 400:
        raise ProviderError(
            f"{action.capitalize()} failed (HTTP {response.status_code}){error_detail(response)}",
            status=response.status_code,
        )

    return response


def json_body(response: httpx.Response, action: str) -> Any:
    """Decode a JSON response body.

    Raises:
        MalformedResponseError: If the body is not valid JSON
    """
    try:
        return response.json()
    except ValueError as e:
        raise MalformedResponseError(f"{action.capitalize()} returned invalid JSON") from e
