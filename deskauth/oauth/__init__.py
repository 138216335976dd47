"""OAuth authorization code flow for desktop programs.

This package drives the interactive "installed app" OAuth flow: it
serves a one-shot callback on localhost, sends the user to the
provider's consent page, exchanges the returned code for tokens, and
caches the tokens so later runs skip the browser.

Main Components:
    DesktopAuth: Entry point, cached token or interactive flow
    InteractiveFlow: One interactive authorization
    LocalhostCallbackServer: Receives the browser redirect
    TokenSource: Self-refreshing access to the current token
    FileStore / EncryptedFileStore: Token persistence

Quick Start:
    from deskauth.config import AuthConfig
    from deskauth.oauth import DesktopAuth, default_file_store, http_client, print_url

    auth = DesktopAuth(config, storage=default_file_store("myapp"), present=print_url)
    source = await auth.token_source()

    async with http_client(source) as client:
        response = await client.get("https://api.example.com/me")
"""

from .callback import (
    CallbackError,
    CallbackResult,
    CallbackServerError,
    CallbackTimeoutError,
    LocalhostCallbackServer,
)
from .exchange import HttpTokenExchanger, TokenExchangeError, TokenExchanger
from .flow import (
    AuthorizationError,
    FlowState,
    FlowStatus,
    InteractiveAuthUnavailableError,
    InteractiveFlow,
    OAuthFlowError,
    Presenter,
    build_authorization_url,
    open_browser,
    print_url,
)
from .manager import DesktopAuth, describe_token
from .nonce import EntropyError, random_hex
from .source import BearerAuth, TokenRefreshError, TokenSource, http_client
from .store import (
    EncryptedFileStore,
    FileStore,
    Storage,
    TokenDecryptionError,
    TokenStoreError,
    default_file_store,
    default_token_path,
)
from .tokens import Token

__all__ = [
    # Entry point
    "DesktopAuth",
    "describe_token",
    # Flow
    "InteractiveFlow",
    "FlowState",
    "FlowStatus",
    "Presenter",
    "build_authorization_url",
    "print_url",
    "open_browser",
    "OAuthFlowError",
    "AuthorizationError",
    "InteractiveAuthUnavailableError",
    # Callback
    "LocalhostCallbackServer",
    "CallbackResult",
    "CallbackError",
    "CallbackServerError",
    "CallbackTimeoutError",
    # Token endpoint
    "TokenExchanger",
    "HttpTokenExchanger",
    "TokenExchangeError",
    # Tokens
    "Token",
    "TokenSource",
    "TokenRefreshError",
    "BearerAuth",
    "http_client",
    # Storage
    "Storage",
    "FileStore",
    "EncryptedFileStore",
    "TokenStoreError",
    "TokenDecryptionError",
    "default_file_store",
    "default_token_path",
    # Nonces
    "random_hex",
    "EntropyError",
]
