"""Shared fixtures and utilities for classroom-link tests."""

import os
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from classroom_link.config import Config, ServerSettings
from classroom_link.oauth.settings import OAuthSettings


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def oauth_settings() -> OAuthSettings:
    """Create OAuth settings for a mobile-style Google client."""
    return OAuthSettings(
        client_id="123-abc.apps.googleusercontent.com",
        redirect_uri="com.googleusercontent.apps.123-abc:/oauthredirect",
    )


@pytest.fixture
def sample_config(oauth_settings: OAuthSettings) -> Config:
    """Create a sample configuration."""
    return Config(
        oauth=oauth_settings,
        server=ServerSettings(url="https://portal.example.com"),
        config_path=Path("classroom-link.json"),
        env_path=None,
    )


# ============================================================================
# HTTP Fixtures
# ============================================================================


def _make_response(status_code: int = 200, json_data: Any = None, json_error: bool = False) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def make_response() -> Any:
    """Factory for mock httpx responses."""
    return _make_response


@pytest.fixture
def mock_http_client() -> AsyncMock:
    """Create a mock httpx.AsyncClient."""
    client = AsyncMock()
    client.post = AsyncMock()
    client.aclose = AsyncMock()
    return client


# ============================================================================
# Randomness Fixtures
# ============================================================================


def _counting_bytes() -> Any:
    counter = {"next": 0}

    def random_bytes(count: int) -> bytes:
        start = counter["next"]
        counter["next"] = (start + count) % 256
        return bytes((start + i) % 256 for i in range(count))

    return random_bytes


@pytest.fixture
def counting_bytes() -> Any:
    """Factory for deterministic byte sources: 0, 1, 2, ... wrapping at 256."""
    return _counting_bytes


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def no_keyring() -> Generator[MagicMock, None, None]:
    """Make the keyring unavailable so the store uses its fallback key."""
    with patch("classroom_link.store.keyring") as mock_keyring:
        mock_keyring.get_password.side_effect = RuntimeError("No keyring backend")
        yield mock_keyring


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Temporarily clear classroom-link environment variables."""
    old_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("CLASSROOM_LINK_") or key.startswith("TEST_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(old_env)
