"""Interactive OAuth authorization code flow for desktop programs.

This module orchestrates one interactive authorization:
1. Generate a secret callback path and state
2. Start the localhost callback server
3. Build the authorization URL for the server's redirect URI
4. Present the URL to the user
5. Wait for the callback (or cancellation)
6. Exchange the code for tokens

The callback server is shut down on every exit path.
"""

import inspect
import logging
import secrets
import webbrowser
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import urlencode

import click

from ..config import AuthConfig
from .callback import CallbackResult, CallbackTimeoutError, LocalhostCallbackServer
from .exchange import TokenExchanger
from .nonce import EntropyError, RandBytes, random_hex
from .tokens import Token

logger = logging.getLogger(__name__)

Presenter = Callable[[str], Awaitable[None] | None]


class OAuthFlowError(Exception):
    """Error during OAuth flow."""

    pass


class InteractiveAuthUnavailableError(OAuthFlowError):
    """No way to show an authorization URL and no cached token."""

    pass


class AuthorizationError(OAuthFlowError):
    """The provider reported an error, or sent an unusable callback."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description
        message = f"OAuth server returned error: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)


class FlowStatus(str, Enum):
    """Lifecycle of an interactive flow."""

    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_CALLBACK = "awaiting_callback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FlowState:
    """Per-flow secrets: the callback path and the anti-forgery state."""

    path: str
    state: str

    @classmethod
    def generate(cls, randbytes: RandBytes = secrets.token_bytes) -> "FlowState":
        return cls(
            path="/" + random_hex(randbytes=randbytes),
            state=random_hex(randbytes=randbytes),
        )


def build_authorization_url(config: AuthConfig, state: str) -> str:
    """Build the authorization URL for browser redirect.

    Offline access is always requested so that a refresh token is issued.

    Args:
        config: Provider configuration with the redirect URL already set
        state: State parameter for CSRF protection

    Returns:
        Complete authorization URL
    """
    params: dict[str, str] = {
        "access_type": "offline",
        "client_id": config.client_id,
        "response_type": "code",
    }
    if config.redirect_url:
        params["redirect_uri"] = config.redirect_url
    if config.scopes:
        params["scope"] = " ".join(config.scopes)
    params["state"] = state

    auth_url = config.authorization_endpoint
    separator = "&" if "?" in auth_url else "?"
    return f"{auth_url}{separator}{urlencode(params)}"


def print_url(url: str, err: bool = False) -> None:
    """Presenter that prints the authorization URL."""
    click.echo(f"To authenticate, please open {url} in your browser.", err=err)


def open_browser(url: str, err: bool = False) -> None:
    """Presenter that opens the authorization URL in a browser.

    Falls back to printing the URL if no browser can be launched.
    """
    if not webbrowser.open(url):
        print_url(url, err=err)


async def present_url(present: Presenter, url: str) -> None:
    """Call a presenter, awaiting it if it is a coroutine function."""
    result = present(url)
    if inspect.isawaitable(result):
        await result


class InteractiveFlow:
    """Runs one interactive authorization and returns the exchanged Token.

    Usage:
        flow = InteractiveFlow(config, print_url, HttpTokenExchanger())
        token = await flow.run()

    Cancel the task running run() to abandon the flow; CancelledError
    propagates unchanged and the callback server is torn down.
    """

    def __init__(
        self,
        config: AuthConfig,
        present: Presenter | None,
        exchanger: TokenExchanger,
        timeout: float | None = None,
        randbytes: RandBytes = secrets.token_bytes,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize the flow.

        Args:
            config: Provider configuration (never modified)
            present: Shows the authorization URL to the user
            exchanger: Exchanges the authorization code for tokens
            timeout: Seconds to wait for the callback (None waits until cancelled)
            randbytes: Source of cryptographically secure random bytes
            on_status: Optional callback for status messages
        """
        self.config = config
        self.present = present
        self.exchanger = exchanger
        self.timeout = timeout
        self.on_status = on_status or (lambda msg: None)
        self.status = FlowStatus.IDLE
        self.redirect_uri: str | None = None

        self._randbytes = randbytes

    def _emit_status(self, message: str) -> None:
        logger.info(message)
        self.on_status(message)

    async def run(self) -> Token:
        """Execute the flow.

        Returns:
            Token issued by the provider

        Raises:
            InteractiveAuthUnavailableError: If there is no presenter
            CallbackServerError: If the callback server cannot be started
            CallbackTimeoutError: If no callback arrives within the timeout
            AuthorizationError: If the provider reports an error
            TokenExchangeError: If exchanging the code fails
            EntropyError: If the random source fails
        """
        if self.status is not FlowStatus.IDLE:
            raise OAuthFlowError("An InteractiveFlow can only be run once")

        present = self.present
        if present is None:
            self.status = FlowStatus.FAILED
            raise InteractiveAuthUnavailableError("Interactive authentication is unavailable")

        try:
            flow_state = FlowState.generate(self._randbytes)
        except EntropyError:
            self.status = FlowStatus.FAILED
            raise

        try:
            config, result = await self._authorize(flow_state, present)

            if not result.is_success():
                raise AuthorizationError(result.error or "unknown_error", result.error_description)
            assert result.code is not None

            self._emit_status("Exchanging code for tokens...")
            token = await self.exchanger.exchange_code(config, result.code, offline=True)

        except CallbackTimeoutError:
            self.status = FlowStatus.CANCELLED
            raise
        except Exception:
            self.status = FlowStatus.FAILED
            raise
        except BaseException:
            # asyncio.CancelledError and friends
            self.status = FlowStatus.CANCELLED
            raise

        self.status = FlowStatus.SUCCEEDED
        self._emit_status("Successfully authenticated!")
        return token

    async def _authorize(
        self, flow_state: FlowState, present: Presenter
    ) -> tuple[AuthConfig, CallbackResult]:
        """Run the browser half of the flow and return the callback result."""
        async with LocalhostCallbackServer(
            flow_state.path, flow_state.state, timeout=self.timeout
        ) as server:
            self.status = FlowStatus.LISTENING
            self.redirect_uri = server.redirect_uri

            config = self.config.with_redirect_url(server.redirect_uri)
            server.authorization_url = build_authorization_url(config, flow_state.state)

            await present_url(present, server.authorization_url)

            self.status = FlowStatus.AWAITING_CALLBACK
            self._emit_status(f"Waiting for callback on {server.host}:{server.port}")
            result = await server.wait_for_callback()

        return config, result