"""Shared fixtures and utilities for deskauth tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from deskauth.config import AuthConfig
from deskauth.oauth.tokens import Token


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def auth_config() -> AuthConfig:
    """Create a sample provider configuration."""
    return AuthConfig(
        client_id="test_client",
        client_secret="test_secret",
        authorization_endpoint="https://auth.example.com/authorize",
        token_endpoint="https://auth.example.com/token",
        scopes=("read", "write"),
    )


@pytest.fixture
def valid_token() -> Token:
    """Create a token that expires in an hour."""
    return Token(
        access_token="cached_access_token",
        token_type="Bearer",
        refresh_token="cached_refresh_token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scope="read write",
    )


@pytest.fixture
def expired_token() -> Token:
    """Create a token that expired an hour ago."""
    return Token(
        access_token="old_access_token",
        token_type="Bearer",
        refresh_token="old_refresh_token",
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )


@pytest.fixture
def mock_exchanger() -> MagicMock:
    """Create a TokenExchanger whose exchange and refresh return fixed tokens."""
    exchanger = MagicMock()
    exchanger.exchange_code = AsyncMock(
        return_value=Token(
            access_token="exchanged_access_token",
            refresh_token="exchanged_refresh_token",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )
    exchanger.refresh = AsyncMock(
        return_value=Token(
            access_token="refreshed_access_token",
            refresh_token="exchanged_refresh_token",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )
    return exchanger


# ============================================================================
# HTTP helpers
# ============================================================================


async def _http_get(port: int, target: str, method: str = "GET") -> tuple[int, dict[str, str], str]:
    """Send a minimal HTTP request to 127.0.0.1:port like a browser would.

    Returns:
        (status code, lower-cased headers, body)
    """
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        writer.write(f"{method} {target} HTTP/1.1\r\nHost: 127.0.0.1:{port}\r\n\r\n".encode())
        await writer.drain()
        raw = await reader.read()
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            pass

    head, _, body = raw.decode("utf-8").partition("\r\n\r\n")
    lines = head.split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


@pytest.fixture
def http_get():
    """Raw HTTP GET helper for talking to the callback server."""
    return _http_get
