"""Tests for the code exchange and the backing server client."""

from unittest.mock import AsyncMock

import httpx
import pytest

from classroom_link.oauth.backend import BackendClient
from classroom_link.oauth.errors import (
    ErrorKind,
    MalformedResponseError,
    NetworkError,
    ProviderError,
    RegistrationFailedError,
)
from classroom_link.oauth.exchange import (
    GOOGLE_TOKEN_ENDPOINT,
    TokenExchangeClient,
    exchange_code_for_tokens,
)
from classroom_link.oauth.http import error_detail

TOKEN_RESPONSE = {
    "access_token": "ya29.access",
    "refresh_token": "1//refresh",
    "expires_in": 3599,
    "token_type": "Bearer",
}


class TestExchangeCodeForTokens:
    """Tests for the provider token request."""

    @pytest.mark.asyncio
    async def test_sends_form_encoded_request(self, mock_http_client, make_response):
        """Test the exact body of the token request."""
        mock_http_client.post.return_value = make_response(200, TOKEN_RESPONSE)

        tokens = await exchange_code_for_tokens(
            GOOGLE_TOKEN_ENDPOINT,
            "client-id",
            "auth-code",
            "com.example:/oauthredirect",
            "the-verifier",
            mock_http_client,
        )

        assert tokens.access_token == "ya29.access"
        assert tokens.refresh_token == "1//refresh"

        args, kwargs = mock_http_client.post.call_args
        assert args[0] == GOOGLE_TOKEN_ENDPOINT
        assert kwargs["data"] == {
            "client_id": "client-id",
            "code": "auth-code",
            "grant_type": "authorization_code",
            "redirect_uri": "com.example:/oauthredirect",
            "code_verifier": "the-verifier",
        }
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_client_secret_only_when_configured(self, mock_http_client, make_response):
        """Test that confidential clients send their secret."""
        mock_http_client.post.return_value = make_response(200, TOKEN_RESPONSE)

        await exchange_code_for_tokens(
            GOOGLE_TOKEN_ENDPOINT, "cid", "code", "uri", "verifier", mock_http_client,
            client_secret="shh",
        )

        assert mock_http_client.post.call_args.kwargs["data"]["client_secret"] == "shh"

    @pytest.mark.asyncio
    async def test_http_error_maps_to_provider_error(self, mock_http_client, make_response):
        """Test that 4xx answers surface the OAuth error code only."""
        mock_http_client.post.return_value = make_response(
            400,
            {"error": "invalid_grant", "error_description": "Bad Request", "raw": "SECRET"},
        )

        with pytest.raises(ProviderError) as exc_info:
            await exchange_code_for_tokens(
                GOOGLE_TOKEN_ENDPOINT, "cid", "code", "uri", "verifier", mock_http_client
            )

        assert exc_info.value.status == 400
        assert "invalid_grant" in str(exc_info.value)
        assert "SECRET" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_network_error(self, mock_http_client):
        """Test that transport failures become NetworkError."""
        mock_http_client.post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(NetworkError) as exc_info:
            await exchange_code_for_tokens(
                GOOGLE_TOKEN_ENDPOINT, "cid", "code", "uri", "verifier", mock_http_client
            )

        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_invalid_json_maps_to_malformed(self, mock_http_client, make_response):
        """Test that a non-JSON 200 answer is malformed."""
        mock_http_client.post.return_value = make_response(200, json_error=True)

        with pytest.raises(MalformedResponseError, match="invalid JSON"):
            await exchange_code_for_tokens(
                GOOGLE_TOKEN_ENDPOINT, "cid", "code", "uri", "verifier", mock_http_client
            )

    @pytest.mark.asyncio
    async def test_missing_refresh_token_is_malformed(self, mock_http_client, make_response):
        """Test that a grant without a refresh token is rejected."""
        mock_http_client.post.return_value = make_response(200, {"access_token": "a"})

        with pytest.raises(MalformedResponseError, match="refresh_token"):
            await exchange_code_for_tokens(
                GOOGLE_TOKEN_ENDPOINT, "cid", "code", "uri", "verifier", mock_http_client
            )


class TestErrorDetail:
    """Tests for safe error detail extraction."""

    def test_oauth_error(self, make_response):
        assert error_detail(make_response(400, {"error": "invalid_client"})) == ": invalid_client - "

    def test_nested_google_error(self, make_response):
        response = make_response(403, {"error": {"status": "PERMISSION_DENIED", "code": 403}})
        assert "PERMISSION_DENIED" in error_detail(response)

    def test_server_message(self, make_response):
        assert error_detail(make_response(500, {"message": "db down"})) == ": db down"

    def test_non_json_body(self, make_response):
        assert error_detail(make_response(502, json_error=True)) == ""


class TestTokenExchangeClient:
    """Tests for exchange plus registration."""

    @pytest.fixture
    def registrar(self) -> AsyncMock:
        registrar = AsyncMock()
        registrar.register_tokens = AsyncMock(return_value=None)
        return registrar

    @pytest.mark.asyncio
    async def test_registers_tokens_for_user(self, mock_http_client, make_response, registrar):
        """Test that tokens go to the registrar and not into the result."""
        mock_http_client.post.return_value = make_response(200, TOKEN_RESPONSE)
        client = TokenExchangeClient("cid", registrar, http_client=mock_http_client)

        result = await client.exchange("code", "verifier", "uri", "s1234567")

        registrar.register_tokens.assert_awaited_once_with("s1234567", "ya29.access", "1//refresh")
        assert result.registered
        assert "ya29.access" not in repr(result)

    @pytest.mark.asyncio
    async def test_registration_failure_is_soft(self, mock_http_client, make_response, registrar):
        """Test that a failing registrar yields a warning, not an exception."""
        mock_http_client.post.return_value = make_response(200, TOKEN_RESPONSE)
        registrar.register_tokens.side_effect = NetworkError("server unreachable")
        client = TokenExchangeClient("cid", registrar, http_client=mock_http_client)

        result = await client.exchange("code", "verifier", "uri", "s1234567")

        assert not result.registered
        assert isinstance(result.registration_error, RegistrationFailedError)
        assert "server unreachable" in str(result.registration_error)

    @pytest.mark.asyncio
    async def test_no_user_skips_registration(self, mock_http_client, make_response, registrar):
        """Test that without a user the tokens are not registered."""
        mock_http_client.post.return_value = make_response(200, TOKEN_RESPONSE)
        client = TokenExchangeClient("cid", registrar, http_client=mock_http_client)

        result = await client.exchange("code", "verifier", "uri", None)

        registrar.register_tokens.assert_not_awaited()
        assert result.registration_error is not None

    @pytest.mark.asyncio
    async def test_provider_failure_skips_registration(self, mock_http_client, make_response, registrar):
        """Test that nothing is registered when the provider refuses."""
        mock_http_client.post.return_value = make_response(400, {"error": "invalid_grant"})
        client = TokenExchangeClient("cid", registrar, http_client=mock_http_client)

        with pytest.raises(ProviderError):
            await client.exchange("code", "verifier", "uri", "s1234567")

        registrar.register_tokens.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, mock_http_client, registrar):
        """Test that an injected HTTP client stays open."""
        async with TokenExchangeClient("cid", registrar, http_client=mock_http_client):
            pass
        mock_http_client.aclose.assert_not_awaited()


class TestBackendClient:
    """Tests for the backing server API."""

    @pytest.mark.asyncio
    async def test_register_tokens_body(self, mock_http_client, make_response):
        """Test the token registration payload."""
        mock_http_client.post.return_value = make_response(200, {"status": True, "message": "ok"})
        backend = BackendClient("https://portal.example.com/", http_client=mock_http_client)

        await backend.register_tokens("s1234567", "access", "refresh")

        args, kwargs = mock_http_client.post.call_args
        assert args[0] == "https://portal.example.com/oauth/tokens"
        assert kwargs["json"] == {
            "username": "s1234567",
            "access_token": "access",
            "refresh_token": "refresh",
        }

    @pytest.mark.asyncio
    async def test_register_tokens_without_refresh(self, mock_http_client, make_response):
        """Test that a missing refresh token is omitted from the body."""
        mock_http_client.post.return_value = make_response(200, {"status": True})
        backend = BackendClient("https://portal.example.com", http_client=mock_http_client)

        await backend.register_tokens("s1234567", "access")

        assert "refresh_token" not in mock_http_client.post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_rejected_registration(self, mock_http_client, make_response):
        """Test that status false raises ProviderError with the server message."""
        mock_http_client.post.return_value = make_response(
            200, {"status": False, "message": "unknown user"}
        )
        backend = BackendClient("https://portal.example.com", http_client=mock_http_client)

        with pytest.raises(ProviderError, match="unknown user"):
            await backend.register_tokens("nobody", "access", "refresh")

    @pytest.mark.asyncio
    async def test_revoke(self, mock_http_client, make_response):
        """Test the revoke request."""
        mock_http_client.post.return_value = make_response(200, {"status": True, "message": "ok"})
        backend = BackendClient("https://portal.example.com", http_client=mock_http_client)

        await backend.revoke("s1234567")

        args, kwargs = mock_http_client.post.call_args
        assert args[0] == "https://portal.example.com/oauth/revoke"
        assert kwargs["json"] == {"username": "s1234567"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("linked", [True, False])
    async def test_check_status(self, mock_http_client, make_response, linked):
        """Test that status reflects the server's answer."""
        mock_http_client.post.return_value = make_response(200, {"status": linked, "message": ""})
        backend = BackendClient("https://portal.example.com", http_client=mock_http_client)

        assert await backend.check_status("s1234567") is linked
        assert mock_http_client.post.call_args.args[0].endswith("/oauth/status")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"message": "ok"}, {"status": "true"}, ["status"]])
    async def test_missing_status_is_malformed(self, mock_http_client, make_response, body):
        """Test that answers without a boolean status are malformed."""
        mock_http_client.post.return_value = make_response(200, body)
        backend = BackendClient("https://portal.example.com", http_client=mock_http_client)

        with pytest.raises(MalformedResponseError):
            await backend.check_status("s1234567")
