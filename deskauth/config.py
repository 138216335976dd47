"""Config discovery and loading for deskauth."""

import json
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .platform import get_user_config_dir

CONFIG_FILENAME = "deskauth.json"
DEFAULT_APP_NAME = "deskauth"

REQUIRED_KEYS = ("client_id", "authorization_endpoint", "token_endpoint")


class ConfigError(Exception):
    """Configuration file missing or invalid."""

    pass


def _resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} patterns in a string from environment variables.

    Missing vars resolve to empty string.
    """
    if "${" not in value:
        return value

    result = value
    for match in re.finditer(r'\$\{([^}]+)\}', value):
        env_var = match.group(1)
        env_value = os.environ.get(env_var, "")
        result = result.replace(match.group(0), env_value)
    return result


@dataclass(frozen=True)
class AuthConfig:
    """OAuth provider configuration for the authorization code flow.

    Instances are never mutated by a flow. Each flow run derives its own
    copy carrying the redirect URL of its callback server.
    """

    client_id: str
    authorization_endpoint: str
    token_endpoint: str
    client_secret: str | None = None
    scopes: tuple[str, ...] = ()
    redirect_url: str | None = None

    def with_redirect_url(self, redirect_url: str) -> "AuthConfig":
        """Return a copy of this config using redirect_url."""
        return replace(self, redirect_url=redirect_url)

    def is_confidential(self) -> bool:
        """Check if this is a confidential client (has a secret)."""
        return self.client_secret is not None and len(self.client_secret) > 0


@dataclass
class LoadedConfig:
    """Configuration loaded from disk, plus where it came from."""

    auth: AuthConfig
    app_name: str = DEFAULT_APP_NAME
    token_file: Path | None = None
    encrypt_tokens: bool = False
    config_path: Path | None = None
    env_path: Path | None = None


def config_search_paths() -> list[Path]:
    """Locations checked for a config file, in priority order."""
    paths = [Path(CONFIG_FILENAME)]
    user_dir = get_user_config_dir()
    if user_dir is not None:
        paths.append(user_dir / DEFAULT_APP_NAME / CONFIG_FILENAME)
    return paths


def find_config_file(explicit_path: Path | None = None) -> Path | None:
    """Find the config file, checking the working directory then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in config_search_paths():
        if path.exists():
            return path
    return None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    path = Path(".env")
    return path if path.exists() else None


def parse_auth_config(data: dict[str, Any]) -> AuthConfig:
    """Build an AuthConfig from JSON data, expanding ${VAR} references.

    Raises:
        ConfigError: If a required key is missing or empty
    """
    resolved = {
        key: _resolve_env_vars(value) if isinstance(value, str) else value
        for key, value in data.items()
    }

    missing = [key for key in REQUIRED_KEYS if not resolved.get(key)]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    scopes = resolved.get("scopes") or []
    if isinstance(scopes, str):
        scopes = scopes.split()
    scopes = tuple(_resolve_env_vars(s) for s in scopes)

    return AuthConfig(
        client_id=resolved["client_id"],
        client_secret=resolved.get("client_secret") or None,
        authorization_endpoint=resolved["authorization_endpoint"],
        token_endpoint=resolved["token_endpoint"],
        scopes=scopes,
        redirect_url=resolved.get("redirect_url") or None,
    )


def load_config(
    config_path: Path | None = None,
    env_path: Path | None = None,
) -> LoadedConfig:
    """Load deskauth configuration from discovered or explicit paths.

    Args:
        config_path: Explicit path to config file (optional)
        env_path: Explicit path to .env file (optional)

    Returns:
        LoadedConfig with the provider settings

    Raises:
        ConfigError: If no config file is found or it is invalid
    """
    # Load .env first so ${VAR} references can see it
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    config_file = find_config_file(config_path)
    if config_file is None:
        searched = ", ".join(str(p) for p in ([config_path] if config_path else config_search_paths()))
        raise ConfigError(
            f"No deskauth config file found.\n\n"
            f"Searched:\n  {searched}\n\n"
            f"Create one with your OAuth client settings. Example ({CONFIG_FILENAME}):\n\n"
            f'{{\n  "client_id": "${{MYAPP_CLIENT_ID}}",\n'
            f'  "client_secret": "${{MYAPP_CLIENT_SECRET}}",\n'
            f'  "authorization_endpoint": "https://accounts.example.com/o/oauth2/auth",\n'
            f'  "token_endpoint": "https://oauth2.example.com/token",\n'
            f'  "scopes": ["openid", "email"]\n}}'
        )

    try:
        with open(config_file) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_file} contains invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a JSON object")

    auth = parse_auth_config(data)

    token_file = data.get("token_file")
    return LoadedConfig(
        auth=auth,
        app_name=data.get("app_name") or DEFAULT_APP_NAME,
        token_file=Path(_resolve_env_vars(token_file)).expanduser() if token_file else None,
        encrypt_tokens=bool(data.get("encrypt_tokens", False)),
        config_path=config_file,
        env_path=env_file,
    )
