"""Tests for redirect parsing, the loopback server and the browser presenter."""

import asyncio
from unittest.mock import patch

import pytest

from classroom_link.oauth.callback import (
    BrowserPresenter,
    CallbackError,
    CallbackResult,
    CallbackTimeoutError,
    LocalhostCallbackServer,
    parse_callback_url,
)


async def send_request(port: int, request_line: str) -> str:
    """Play the browser: send one request and return the raw response."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"{request_line}\r\nHost: 127.0.0.1\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response.decode("utf-8", errors="replace")


class TestParseCallbackUrl:
    """Tests for parse_callback_url function."""

    def test_custom_scheme_redirect(self) -> None:
        """Test parsing the reversed-client-id redirect a mobile client receives."""
        url = "com.googleusercontent.apps.123-abc:/oauthredirect?code=4/abc&state=xyz"
        result = parse_callback_url(url)

        assert result.code == "4/abc"
        assert result.state == "xyz"
        assert result.is_success()

    def test_loopback_redirect(self) -> None:
        """Test parsing a full loopback URL."""
        result = parse_callback_url("http://127.0.0.1:5000/oauthredirect?code=c&state=s")
        assert (result.code, result.state) == ("c", "s")

    def test_error_redirect(self) -> None:
        """Test parsing a denial."""
        url = "/oauthredirect?error=access_denied&error_description=User+denied+access&state=xyz"
        result = parse_callback_url(url)

        assert result.code is None
        assert result.error == "access_denied"
        assert result.error_description == "User denied access"
        assert not result.is_success()

    def test_empty_params(self) -> None:
        """Test parsing a redirect with no parameters."""
        result = parse_callback_url("/oauthredirect")
        assert result == CallbackResult()

    def test_multiple_values_takes_first(self) -> None:
        """Test that a repeated parameter uses its first value."""
        assert parse_callback_url("/oauthredirect?code=first&code=second").code == "first"

    def test_repr_redacts_code(self) -> None:
        """Test that the authorization code stays out of logs."""
        result = CallbackResult(code="secret-code", state="s")
        assert "secret-code" not in repr(result)


class TestLocalhostCallbackServer:
    """Tests for LocalhostCallbackServer class."""

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        """Test that the server binds an ephemeral loopback port."""
        async with LocalhostCallbackServer(timeout=5) as server:
            assert server.port > 0
            assert server.redirect_uri == f"http://127.0.0.1:{server.port}/oauthredirect"

    @pytest.mark.asyncio
    async def test_timeout_raises_error(self) -> None:
        """Test that timeout raises CallbackTimeoutError."""
        async with LocalhostCallbackServer(timeout=0.2) as server:
            with pytest.raises(CallbackTimeoutError, match="Timeout"):
                await server.wait_for_callback()

    @pytest.mark.asyncio
    async def test_wait_without_start_raises_error(self) -> None:
        """Test that waiting on a stopped server fails."""
        with pytest.raises(CallbackError, match="not started"):
            await LocalhostCallbackServer().wait_for_callback()

    @pytest.mark.asyncio
    async def test_successful_callback(self) -> None:
        """Test receiving a successful redirect."""
        async with LocalhostCallbackServer(timeout=5) as server:
            response_task = asyncio.create_task(
                send_request(server.port, "GET /oauthredirect?code=test_code&state=test_state HTTP/1.1")
            )
            result = await server.wait_for_callback()
            response = await response_task

        assert result.code == "test_code"
        assert result.state == "test_state"
        assert "200 OK" in response
        assert "Authorization received" in response

    @pytest.mark.asyncio
    async def test_error_callback_is_escaped(self) -> None:
        """Test that error text is HTML-escaped in the page."""
        async with LocalhostCallbackServer(timeout=5) as server:
            response_task = asyncio.create_task(
                send_request(
                    server.port,
                    "GET /oauthredirect?error=%3Cscript%3E&error_description=bad HTTP/1.1",
                )
            )
            result = await server.wait_for_callback()
            response = await response_task

        assert result.error == "<script>"
        assert "<script>" not in response
        assert "&lt;script&gt;" in response

    @pytest.mark.asyncio
    async def test_security_headers(self) -> None:
        """Test that the HTML page carries restrictive headers."""
        async with LocalhostCallbackServer(timeout=5) as server:
            response_task = asyncio.create_task(
                send_request(server.port, "GET /oauthredirect?code=c&state=s HTTP/1.1")
            )
            await server.wait_for_callback()
            response = await response_task

        assert "X-Frame-Options: DENY" in response
        assert "X-Content-Type-Options: nosniff" in response
        assert "Content-Security-Policy:" in response

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("request_line", "status"),
        [
            ("GET /favicon.ico HTTP/1.1", "404"),
            ("GET /elsewhere?code=c HTTP/1.1", "404"),
            ("GET /oauthredirect-extra?code=c HTTP/1.1", "404"),
            ("POST /oauthredirect?code=c HTTP/1.1", "405"),
        ],
    )
    async def test_other_requests_do_not_complete(self, request_line: str, status: str) -> None:
        """Test that only a GET on the redirect path is accepted."""
        async with LocalhostCallbackServer(timeout=0.5) as server:
            response = await send_request(server.port, request_line)

            assert f"HTTP/1.1 {status}" in response
            with pytest.raises(CallbackTimeoutError):
                await server.wait_for_callback()

    @pytest.mark.asyncio
    async def test_first_redirect_wins(self) -> None:
        """Test that a browser retry cannot replace the first result."""
        async with LocalhostCallbackServer(timeout=5) as server:
            await send_request(server.port, "GET /oauthredirect?code=first&state=s HTTP/1.1")
            await send_request(server.port, "GET /oauthredirect?code=second&state=s HTTP/1.1")
            result = await server.wait_for_callback()

        assert result.code == "first"

    @pytest.mark.asyncio
    async def test_bare_redirect_keeps_waiting(self) -> None:
        """Test that a hit with neither code nor error does not end the wait."""
        async with LocalhostCallbackServer(timeout=5) as server:
            response = await send_request(server.port, "GET /oauthredirect HTTP/1.1")
            assert "HTTP/1.1 400" in response

            await send_request(server.port, "GET /oauthredirect?code=real&state=s HTTP/1.1")
            result = await server.wait_for_callback()

        assert result.code == "real"


class TestBrowserPresenter:
    """Tests for BrowserPresenter."""

    @pytest.mark.asyncio
    async def test_opens_browser_and_returns_redirect(self) -> None:
        """Test the full present() round trip."""
        messages: list[str] = []

        async with BrowserPresenter(timeout=5, on_status=messages.append) as presenter:
            with patch("classroom_link.oauth.callback.webbrowser.open", return_value=True) as mock_open:
                present_task = asyncio.create_task(presenter.present("https://accounts.google.com/auth"))
                await asyncio.sleep(0.05)
                await send_request(presenter.server.port, "GET /oauthredirect?code=c&state=s HTTP/1.1")
                result = await present_task

        mock_open.assert_called_once_with("https://accounts.google.com/auth")
        assert result is not None and result.code == "c"
        assert any("Opened browser" in m for m in messages)

    @pytest.mark.asyncio
    async def test_no_browser_prints_url(self) -> None:
        """Test that --no-browser mode shows the URL instead."""
        messages: list[str] = []

        async with BrowserPresenter(timeout=0.2, open_browser=False, on_status=messages.append) as presenter:
            with patch("classroom_link.oauth.callback.webbrowser.open") as mock_open:
                result = await presenter.present("https://accounts.google.com/auth")

        mock_open.assert_not_called()
        assert any("https://accounts.google.com/auth" in m for m in messages)
        assert result is None  # timed out, treated as cancellation
