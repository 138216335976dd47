"""CLI entry point for deskauth."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from pathlib import Path

import click

from . import __version__
from .config import ConfigError, LoadedConfig, load_config
from .oauth import (
    CallbackError,
    DesktopAuth,
    EncryptedFileStore,
    FileStore,
    OAuthFlowError,
    Presenter,
    Token,
    TokenExchangeError,
    TokenRefreshError,
    TokenStoreError,
    default_file_store,
    describe_token,
    open_browser,
    print_url,
)
from .output import OutputHandler

logger = logging.getLogger("deskauth")

DEFAULT_CALLBACK_TIMEOUT = 300.0

AUTH_ERRORS = (
    OAuthFlowError,
    CallbackError,
    TokenExchangeError,
    TokenRefreshError,
    TokenStoreError,
)


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Path to deskauth config file")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, config_path: str | None, env_path: str | None, verbose: bool) -> None:
    """deskauth - OAuth login for desktop programs."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> LoadedConfig:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_config(ctx.obj["config_path"], ctx.obj["env_path"])
    except ConfigError as e:
        output.error(e, error_type="ConfigError")


def get_storage(config: LoadedConfig) -> FileStore:
    """Token storage selected by the config."""
    if config.token_file is not None:
        if config.encrypt_tokens:
            return EncryptedFileStore(config.token_file)
        return FileStore(config.token_file)
    return default_file_store(config.app_name, encrypted=config.encrypt_tokens)


def get_presenter(ctx: click.Context, no_browser: bool) -> Presenter:
    """Presenter for the authorization URL; stderr in JSON mode."""
    err = ctx.obj["json_mode"]
    if no_browser:
        return partial(print_url, err=err)
    return partial(open_browser, err=err)


def build_auth(
    ctx: click.Context,
    config: LoadedConfig,
    present: Presenter | None,
    timeout: float | None = DEFAULT_CALLBACK_TIMEOUT,
) -> DesktopAuth:
    output: OutputHandler = ctx.obj["output"]
    storage = get_storage(config)
    logger.debug(f"Token storage: {storage!r}")
    return DesktopAuth(
        config=config.auth,
        storage=storage,
        present=present,
        callback_timeout=timeout,
        on_status=output.status,
    )


def _auth_help(error: Exception) -> str:
    if isinstance(error, TokenStoreError):
        return "The token cache could not be read. Run 'deskauth logout' and log in again."
    if isinstance(error, TokenRefreshError):
        return "Run 'deskauth login --force' to sign in again."
    return "Authentication failed. Run with --verbose for details."


@main.command()
@click.option("--force", "-f", is_flag=True, help="Re-authenticate even if a valid token is cached")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening a browser")
@click.option("--timeout", "-t", type=float, default=DEFAULT_CALLBACK_TIMEOUT, help="Seconds to wait for the browser callback")
@click.pass_context
def login(ctx: click.Context, force: bool, no_browser: bool, timeout: float) -> None:
    """Sign in through the browser and cache the token."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    auth = build_auth(ctx, config, get_presenter(ctx, no_browser), timeout)

    if not force:
        try:
            cached = auth.cached_token()
        except TokenStoreError as e:
            output.error(e, help_text=_auth_help(e))
        if cached is not None and cached.is_valid():
            output.success(
                {"authenticated": True, "already_authenticated": True, **describe_token(cached)},
                "Already authenticated. Use --force to sign in again.",
            )
            return

    try:
        token = asyncio.run(auth.authenticate())
    except KeyboardInterrupt:
        output.error(RuntimeError("Authentication cancelled"))
    except AUTH_ERRORS as e:
        output.error(e, help_text=_auth_help(e))

    output.success(
        {"authenticated": True, "already_authenticated": False, **describe_token(token)},
        "Successfully authenticated.",
    )


@main.command()
@click.option("--header", is_flag=True, help="Print a complete Authorization header value")
@click.option("--no-interactive", is_flag=True, help="Fail instead of opening a browser when no token is cached")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening a browser")
@click.pass_context
def token(ctx: click.Context, header: bool, no_interactive: bool, no_browser: bool) -> None:
    """Print a valid access token, refreshing or signing in as needed."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    present = None if no_interactive else get_presenter(ctx, no_browser)
    auth = build_auth(ctx, config, present)

    async def get_token() -> Token:
        source = await auth.token_source()
        return await source.token()

    try:
        current = asyncio.run(get_token())
    except KeyboardInterrupt:
        output.error(RuntimeError("Authentication cancelled"))
    except AUTH_ERRORS as e:
        output.error(e, help_text=_auth_help(e))

    value = current.get_auth_header() if header else current.access_token
    output.success({"token": value, **describe_token(current)}, value)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the cached token (without secrets)."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    storage = get_storage(config)

    try:
        cached = storage.read()
    except TokenStoreError as e:
        output.error(e, help_text=_auth_help(e))

    data = {"token_file": str(storage.path), "authenticated": cached is not None}
    if isinstance(storage, EncryptedFileStore):
        data["using_keyring"] = storage.is_using_keyring()

    if cached is None:
        output.success(data, f"Not authenticated (no token in {storage.path}).")
        return

    info = describe_token(cached)
    data.update(info)

    lines = [f"Token file: {storage.path}"]
    if info["is_expired"]:
        refresh = "can be refreshed" if info["has_refresh_token"] else "login required"
        lines.append(f"Status: expired ({refresh})")
    else:
        lines.append("Status: valid")
    if info["expires_in_human"]:
        lines.append(f"Expires in: {info['expires_in_human']}")
    if info["scope"]:
        lines.append(f"Scope: {info['scope']}")
    lines.append(f"Refresh token: {'yes' if info['has_refresh_token'] else 'no'}")
    if data.get("using_keyring") is False:
        lines.append("Warning: keyring unavailable, using fallback encryption key")

    output.success(data, "\n".join(lines))


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Delete the cached token."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    auth = build_auth(ctx, config, present=None)

    try:
        deleted = auth.logout()
    except TokenStoreError as e:
        output.error(e)

    message = "Logged out." if deleted else "No cached token to remove."
    output.success({"logged_out": deleted}, message)


if __name__ == "__main__":
    main()
