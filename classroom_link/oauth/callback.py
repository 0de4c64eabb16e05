"""Redirect handling and presenters for the provider consent page.

A presenter shows the authorization URL to the user and hands back what the
provider redirected with. Mobile clients do this with an embedded web view
and a custom-scheme redirect; from a terminal we open the system browser and
catch the redirect on an ephemeral loopback server.
"""

import asyncio
import html
import logging
import webbrowser
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Callable, Protocol
from urllib.parse import parse_qs, urlsplit

logger = logging.getLogger(__name__)

# Default timeout for waiting for callback
DEFAULT_TIMEOUT = 300  # seconds

CALLBACK_PATH = "/oauthredirect"


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


@dataclass
class CallbackResult:
    """What the provider redirected back with.

    Attributes:
        code: The authorization code from the callback
        state: The state parameter from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if callback was successful."""
        return self.code is not None and self.error is None

    def __repr__(self) -> str:
        # Authorization codes are single-use secrets; keep them out of logs
        code = "<redacted>" if self.code else None
        return (
            f"CallbackResult(code={code!r}, error={self.error!r}, "
            f"error_description={self.error_description!r})"
        )


def parse_callback_url(url: str) -> CallbackResult:
    """Parse OAuth redirect parameters.

    Accepts a full URL (``http://127.0.0.1:5000/oauthredirect?...``), a
    custom-scheme URL (``com.googleusercontent.apps.123:/oauthredirect?...``)
    or a bare request path (``/oauthredirect?...``).

    Args:
        url: The redirect URL with query parameters

    Returns:
        CallbackResult with parsed parameters
    """
    params = parse_qs(urlsplit(url).query)

    # Get first value of each parameter (or None if not present)
    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


class AuthorizationPresenter(Protocol):
    """Displays the consent page and returns the redirect.

    ``present`` returns None when the user cancels.
    """

    async def present(self, url: str) -> CallbackResult | None: ...


# HTML templates for callback responses
SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Classroom Linked</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f1f3f4;
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 16px;
            text-align: center;
            box-shadow: 0 10px 40px rgba(0,0,0,0.1);
        }}
        h1 {{ color: #188038; margin: 0 0 8px 0; font-size: 24px; }}
        p {{ color: #5f6368; margin: 0; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Authorization received</h1>
        <p>You can close this window and return to the terminal.</p>
    </div>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authorization Failed</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #fce8e6;
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 16px;
            text-align: center;
            max-width: 400px;
        }}
        h1 {{ color: #c5221f; margin: 0 0 8px 0; font-size: 24px; }}
        p {{ color: #5f6368; margin: 0 0 16px 0; }}
        .error {{ font-family: monospace; font-size: 14px; color: #c5221f; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Authorization failed</h1>
        <p>Google Classroom was not linked.</p>
        <div class="error">{error}: {description}</div>
    </div>
</body>
</html>"""


class LocalhostCallbackServer:
    """Ephemeral loopback HTTP server for OAuth redirects.

    Usage:
        async with LocalhostCallbackServer() as server:
            redirect_uri = server.redirect_uri
            # Open browser with authorization URL using redirect_uri
            result = await server.wait_for_callback()
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, path: str = CALLBACK_PATH):
        """Initialize callback server.

        Args:
            timeout: Timeout in seconds to wait for callback
            path: URL path to listen on
        """
        self.timeout = timeout
        self.path = path
        self.port: int = 0
        self.redirect_uri: str = ""

        self._server: asyncio.Server | None = None
        self._result: CallbackResult | None = None
        self._result_event: asyncio.Event | None = None

    async def start(self) -> str:
        """Start the callback server.

        Uses port=0 to let the OS atomically assign an available port.

        Returns:
            The redirect URI to use in the authorization request
        """
        self._result_event = asyncio.Event()
        self._result = None

        self._server = await asyncio.start_server(self._handle_connection, "127.0.0.1", 0)

        sockets = self._server.sockets
        if not sockets:
            raise CallbackError("Failed to start callback server: no sockets created")

        self.port = sockets[0].getsockname()[1]
        self.redirect_uri = f"http://127.0.0.1:{self.port}{self.path}"

        logger.debug(f"Callback server started on {self.redirect_uri}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Stop the callback server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.debug("Callback server stopped")

    async def wait_for_callback(self) -> CallbackResult:
        """Wait for the OAuth redirect.

        Raises:
            CallbackTimeoutError: If timeout is reached
        """
        if self._result_event is None:
            raise CallbackError("Server not started")

        try:
            await asyncio.wait_for(self._result_event.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"Timeout waiting for OAuth callback after {self.timeout} seconds"
            ) from None

        if self._result is None:
            raise CallbackError("No callback result received")

        return self._result

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle incoming HTTP connection."""
        try:
            request_line = await reader.readline()
            parts = request_line.decode("utf-8", errors="replace").strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, path = parts[0], parts[1]

            # Drain headers
            while True:
                header_line = await reader.readline()
                if header_line in (b"\r\n", b"\n", b""):
                    break

            if path == "/favicon.ico":
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            if urlsplit(path).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            # Only the first redirect counts; browser retries get the same page
            if self._result is None:
                parsed = parse_callback_url(path)
                if parsed.code is None and parsed.error is None:
                    # Prefetch or stray hit; keep waiting for the real redirect
                    await self._send_response(
                        writer, HTTPStatus.BAD_REQUEST, "Missing code or error parameter"
                    )
                    return
                self._result = parsed
            result = self._result

            if result.is_success():
                await self._send_html_response(writer, HTTPStatus.OK, SUCCESS_HTML.format())
            else:
                error_html = ERROR_HTML.format(
                    error=html.escape(result.error or "unknown_error"),
                    description=html.escape(result.error_description or "No description provided"),
                )
                await self._send_html_response(writer, HTTPStatus.OK, error_html)

            if self._result_event:
                self._result_event.set()

        except (ConnectionError, UnicodeError, asyncio.IncompleteReadError) as e:
            logger.warning(f"Error handling callback request: {e}")

        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        response = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
            f"{body}"
        )
        writer.write(response.encode("utf-8"))
        await writer.drain()

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()


class BrowserPresenter:
    """Presenter that opens the system browser and waits on a loopback server.

    The redirect URI is only known once the server is listening, so enter the
    presenter before building the session's configuration:

        async with BrowserPresenter() as presenter:
            settings = replace(settings, redirect_uri=presenter.redirect_uri)
            ...
            outcome = await session.authorize(presenter)
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        open_browser: bool = True,
        on_status: Callable[[str], None] | None = None,
    ):
        self.server = LocalhostCallbackServer(timeout=timeout)
        self.open_browser = open_browser
        self.on_status = on_status or (lambda msg: None)

    @property
    def redirect_uri(self) -> str:
        return self.server.redirect_uri

    async def present(self, url: str) -> CallbackResult | None:
        """Open the consent page and wait for the redirect.

        Returns None on timeout, which the session treats as a cancellation.
        """
        if not self.open_browser or not webbrowser.open(url):
            self.on_status(f"Open this URL to authorize Google Classroom:\n{url}")
        else:
            self.on_status("Opened browser for Google Classroom authorization...")

        self.on_status(f"Waiting for redirect on {self.redirect_uri}")

        try:
            return await self.server.wait_for_callback()
        except CallbackTimeoutError as e:
            logger.info(str(e))
            self.on_status("Timed out waiting for authorization")
            return None

    async def __aenter__(self) -> "BrowserPresenter":
        await self.server.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.server.stop()
