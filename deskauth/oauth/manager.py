"""High-level entry point: cached tokens first, interactive flow second.

Usage:
    auth = DesktopAuth(
        config=AuthConfig(...),
        storage=default_file_store("myapp"),
        present=print_url,
    )
    source = await auth.token_source()
    async with http_client(source) as client:
        await client.get("https://api.example.com/me")
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import AuthConfig
from .exchange import HttpTokenExchanger, TokenExchanger
from .flow import InteractiveAuthUnavailableError, InteractiveFlow, Presenter
from .nonce import RandBytes
from .source import TokenSource
from .store import Storage
from .tokens import Token

logger = logging.getLogger(__name__)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


def describe_token(token: Token) -> dict[str, Any]:
    """Get non-sensitive token info for display.

    Returns:
        Dictionary with token metadata (no secrets)
    """
    expires_in_human = None
    if token.expires_at:
        expires_at = token.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        expires_in_human = _format_timedelta(expires_at - datetime.now(timezone.utc))

    return {
        "token_type": token.token_type,
        "has_refresh_token": token.has_refresh_token(),
        "expires_at": token.expires_at.isoformat() if token.expires_at else None,
        "expires_in_human": expires_in_human,
        "is_expired": token.is_expired(),
        "scope": token.scope,
    }


@dataclass
class DesktopAuth:
    """Produces OAuth token sources from a local cache or an interactive flow.

    Attributes:
        config: OAuth provider configuration
        storage: Saves tokens from interactive authentication for future
            runs. If None, every token_source() call is interactive.
        present: Shows the authorization URL to the user. If None,
            interactive authentication is disabled and storage must
            provide a token.
        exchanger: Performs code exchange and refresh requests
        callback_timeout: Seconds to wait for the browser callback
        on_status: Optional callback for status messages
    """

    config: AuthConfig
    storage: Storage | None = None
    present: Presenter | None = None
    exchanger: TokenExchanger = field(default_factory=HttpTokenExchanger)
    callback_timeout: float | None = None
    on_status: Callable[[str], None] | None = None
    randbytes: RandBytes = secrets.token_bytes

    async def token_source(self) -> TokenSource:
        """Get a self-refreshing token source, authenticating interactively if needed.

        Raises:
            TokenStoreError: If the cache exists but cannot be read
            InteractiveAuthUnavailableError: If there is no cached token and
                no presenter
            OAuthFlowError, CallbackError, TokenExchangeError: If the
                interactive flow fails
        """
        token = self.cached_token()
        if token is not None:
            logger.debug("Using cached token")
            return self.wrap(token)

        if self.present is None:
            raise InteractiveAuthUnavailableError(
                "Interactive authentication is unavailable and no cached token exists"
            )

        token = await self.authenticate()
        return self.wrap(token)

    def cached_token(self) -> Token | None:
        """Read a usable token from storage.

        A stored token that has expired and carries no refresh token is
        treated as absent.

        Raises:
            TokenStoreError: If storage cannot be read
        """
        if self.storage is None:
            return None

        token = self.storage.read()
        if token is None:
            return None

        if token.is_expired() and not token.has_refresh_token():
            logger.info("Cached token has expired and cannot be refreshed")
            return None

        return token

    async def authenticate(self) -> Token:
        """Run the interactive flow and store the resulting token.

        Returns:
            The newly issued Token
        """
        flow = InteractiveFlow(
            config=self.config,
            present=self.present,
            exchanger=self.exchanger,
            timeout=self.callback_timeout,
            randbytes=self.randbytes,
            on_status=self.on_status,
        )
        token = await flow.run()
        self._save(token)
        return token

    def wrap(self, token: Token) -> TokenSource:
        """Wrap token in a TokenSource that persists refreshed tokens."""
        return TokenSource(
            self.config,
            token,
            self.exchanger,
            on_refresh=self._save if self.storage is not None else None,
        )

    def logout(self) -> bool:
        """Remove the cached token.

        Returns:
            True if a token was removed
        """
        delete = getattr(self.storage, "delete", None)
        if delete is None:
            return False

        deleted: bool = delete()
        if deleted:
            logger.info("Removed cached token")
        return deleted

    def _save(self, token: Token) -> None:
        if self.storage is None:
            return
        self.storage.write(token)
        logger.debug("Cached new token")
