"""Self-refreshing token sources and bearer authentication for httpx."""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, Generator

import httpx

from ..config import AuthConfig
from .exchange import TokenExchanger
from .tokens import Token

logger = logging.getLogger(__name__)


class TokenRefreshError(Exception):
    """The current token expired and cannot be refreshed."""

    pass


class TokenSource:
    """Yields a currently valid token, refreshing it when expired.

    Refreshes are serialized so concurrent callers trigger at most one
    request to the token endpoint.
    """

    def __init__(
        self,
        config: AuthConfig,
        token: Token,
        exchanger: TokenExchanger,
        on_refresh: Callable[[Token], None] | None = None,
    ):
        """Initialize the token source.

        Args:
            config: Provider configuration used for refresh requests
            token: Initial token
            exchanger: Performs refresh requests
            on_refresh: Called with each newly refreshed token (e.g. to persist it)
        """
        self.config = config
        self._token = token
        self._exchanger = exchanger
        self._on_refresh = on_refresh
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Token:
        """The most recent token, which may be expired."""
        return self._token

    async def token(self) -> Token:
        """Get a valid token, refreshing if needed.

        Raises:
            TokenRefreshError: If the token expired and has no refresh token
            TokenExchangeError: If the refresh request fails
        """
        async with self._lock:
            if self._token.is_valid():
                return self._token

            if not self._token.has_refresh_token():
                raise TokenRefreshError(
                    "Access token expired and no refresh token is available. "
                    "Re-authentication is required."
                )

            logger.info("Access token expired, refreshing")
            token = await self._exchanger.refresh(self.config, self._token.refresh_token)  # type: ignore
            self._token = token

            if self._on_refresh is not None:
                self._on_refresh(token)

            return token


class BearerAuth(httpx.Auth):
    """httpx authentication that adds a bearer token from a TokenSource."""

    def __init__(self, source: TokenSource):
        self.source = source

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("BearerAuth requires an httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.source.token()
        request.headers["Authorization"] = token.get_auth_header()
        yield request


def http_client(source: TokenSource, **kwargs: Any) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient that authenticates with tokens from source.

    Args:
        source: Token source supplying bearer tokens
        **kwargs: Passed through to httpx.AsyncClient

    Returns:
        Configured async HTTP client
    """
    return httpx.AsyncClient(auth=BearerAuth(source), **kwargs)
