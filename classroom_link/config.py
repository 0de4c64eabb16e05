"""Config discovery and loading for classroom-link."""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .oauth.backend import DEFAULT_SERVER_URL
from .oauth.http import DEFAULT_TIMEOUT
from .oauth.settings import OAuthSettings, redirect_uri_from_reversed_client_id

CONFIG_FILENAME = "classroom-link.json"

# Directories to search for the config file, in priority order
CONFIG_SEARCH_DIRS = [
    Path("."),
    Path(".classroom-link"),
    Path.home() / ".config" / "classroom-link",
]

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "classroom-link" / ".env",
]

# Environment variables that override file values
ENV_CLIENT_ID = "CLASSROOM_LINK_CLIENT_ID"
ENV_CLIENT_SECRET = "CLASSROOM_LINK_CLIENT_SECRET"
ENV_REDIRECT_URI = "CLASSROOM_LINK_REDIRECT_URI"
ENV_REVERSED_CLIENT_ID = "CLASSROOM_LINK_REVERSED_CLIENT_ID"
ENV_SERVER_URL = "CLASSROOM_LINK_SERVER_URL"


def _resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} patterns in a string from environment variables.

    Handles:
    - Full replacement: "${VAR}" -> "value"
    - Partial replacement: "prefix_${VAR}_suffix" -> "prefix_value_suffix"
    - Missing vars resolve to empty string
    """
    if "${" not in value:
        return value

    result = value
    for match in re.finditer(r"\$\{([^}]+)\}", value):
        result = result.replace(match.group(0), os.environ.get(match.group(1), ""))
    return result


def _resolve(value: Any) -> Any:
    """Apply ${VAR} resolution to every string inside a JSON value."""
    if isinstance(value, str):
        return _resolve_env_vars(value)
    if isinstance(value, list):
        return [_resolve(item) for item in value]
    if isinstance(value, dict):
        return {key: _resolve(item) for key, item in value.items()}
    return value


@dataclass
class ServerSettings:
    """Where the backing server lives."""

    url: str = DEFAULT_SERVER_URL
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class Config:
    """Complete classroom-link configuration."""

    oauth: OAuthSettings = field(default_factory=OAuthSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    config_path: Path | None = None
    env_path: Path | None = None


def find_config_file(explicit_path: Path | None = None) -> Path | None:
    """Find the config file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for search_dir in CONFIG_SEARCH_DIRS:
        candidate = search_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _string_list(value: Any, key: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'oauth.{key}' must be a list of strings")
    return list(value)


def _string_dict(value: Any, key: str) -> dict[str, str]:
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ValueError(f"'oauth.{key}' must be an object of string values")
    return dict(value)


def parse_oauth_settings(data: dict[str, Any]) -> OAuthSettings:
    """Parse the ``oauth`` section of the config file.

    Raises:
        ValueError: If ``scopes`` or ``extraAuthorizationParams`` has the wrong shape
    """
    defaults = OAuthSettings()

    redirect_uri = data.get("redirectUri", "")
    reversed_client_id = data.get("reversedClientId", "")
    if not redirect_uri and reversed_client_id:
        redirect_uri = redirect_uri_from_reversed_client_id(reversed_client_id)

    return OAuthSettings(
        client_id=data.get("clientId", ""),
        client_secret=data.get("clientSecret") or None,
        redirect_uri=redirect_uri,
        scopes=_string_list(data.get("scopes", defaults.scopes), "scopes"),
        authorization_endpoint=data.get("authorizationEndpoint", defaults.authorization_endpoint),
        token_endpoint=data.get("tokenEndpoint", defaults.token_endpoint),
        extra_authorization_params=_string_dict(
            data.get("extraAuthorizationParams", {}), "extraAuthorizationParams"
        ),
    )


def parse_server_settings(data: dict[str, Any]) -> ServerSettings:
    """Parse the ``server`` section of the config file."""
    return ServerSettings(
        url=data.get("url", DEFAULT_SERVER_URL),
        timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
    )


def _apply_env_overrides(config: Config, oauth_data: dict[str, Any]) -> None:
    """Apply CLASSROOM_LINK_* overrides.

    An explicit redirect URI, from the environment or the file, always beats
    one derived from a reversed client id.
    """
    oauth = config.oauth

    if os.environ.get(ENV_CLIENT_ID):
        oauth.client_id = os.environ[ENV_CLIENT_ID]
    if os.environ.get(ENV_CLIENT_SECRET):
        oauth.client_secret = os.environ[ENV_CLIENT_SECRET]
    if os.environ.get(ENV_REDIRECT_URI):
        oauth.redirect_uri = os.environ[ENV_REDIRECT_URI]
    elif os.environ.get(ENV_REVERSED_CLIENT_ID) and not oauth_data.get("redirectUri"):
        oauth.redirect_uri = redirect_uri_from_reversed_client_id(
            os.environ[ENV_REVERSED_CLIENT_ID]
        )
    if os.environ.get(ENV_SERVER_URL):
        config.server.url = os.environ[ENV_SERVER_URL]


def load_config(
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> Config:
    """Load configuration from discovered or explicit paths.

    A missing config file is not an error: everything can come from
    environment variables. Validation of the OAuth settings happens when an
    authorization attempt starts.

    Args:
        config_path: Explicit path to config file (optional)
        env_path: Explicit path to .env file (optional)

    Returns:
        Config with file values, ${VAR} references resolved and
        environment overrides applied

    Raises:
        json.JSONDecodeError: If the config file is invalid JSON
        ValueError: If a section has the wrong shape
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    config_file = find_config_file(config_path)
    data: dict[str, Any] = {}
    if config_file:
        with open(config_file) as f:
            data = _resolve(json.load(f))
        if not isinstance(data, dict):
            raise ValueError(f"{config_file}: top level must be a JSON object")

    oauth_data = data.get("oauth", {})
    server_data = data.get("server", {})
    if not isinstance(oauth_data, dict) or not isinstance(server_data, dict):
        raise ValueError(f"{config_file}: 'oauth' and 'server' must be JSON objects")

    config = Config(
        oauth=parse_oauth_settings(oauth_data),
        server=parse_server_settings(server_data),
        config_path=config_file,
        env_path=env_file,
    )
    _apply_env_overrides(config, oauth_data)
    return config
