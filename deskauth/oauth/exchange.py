"""Token endpoint requests: code exchange and refresh.

The interactive flow and token sources depend only on the TokenExchanger
protocol. HttpTokenExchanger is the default implementation, talking to
the provider's token endpoint with httpx.
"""

import logging
from typing import Any, Protocol

import httpx

from ..config import AuthConfig
from .tokens import Token

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0


class TokenExchangeError(Exception):
    """Error during token exchange or refresh."""

    pass


class TokenExchanger(Protocol):
    """Turns authorization codes and refresh tokens into tokens."""

    async def exchange_code(self, config: AuthConfig, code: str, offline: bool = True) -> Token:
        ...

    async def refresh(self, config: AuthConfig, refresh_token: str) -> Token:
        ...


class HttpTokenExchanger:
    """TokenExchanger that posts form-encoded requests to the token endpoint."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        """Initialize the exchanger.

        Args:
            http_client: Optional client to reuse; one is created per request otherwise
            timeout: Request timeout for clients created here
        """
        self._http_client = http_client
        self._timeout = timeout

    async def exchange_code(self, config: AuthConfig, code: str, offline: bool = True) -> Token:
        """Exchange an authorization code for tokens.

        Args:
            config: Provider configuration carrying the redirect URL used
                in the authorization request
            code: Authorization code from the callback
            offline: Request offline access so a refresh token is issued

        Returns:
            The issued Token

        Raises:
            TokenExchangeError: If the exchange fails
        """
        token_request: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": config.client_id,
        }
        if config.redirect_url:
            token_request["redirect_uri"] = config.redirect_url
        if offline:
            token_request["access_type"] = "offline"

        return await self._request_token(config, token_request, "Token exchange")

    async def refresh(self, config: AuthConfig, refresh_token: str) -> Token:
        """Obtain a new access token with a refresh token.

        Providers may omit the refresh token from the response, in which
        case the one passed in remains valid and is carried over.

        Raises:
            TokenExchangeError: If the refresh fails
        """
        token_request: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
        }

        token = await self._request_token(config, token_request, "Token refresh")
        if not token.has_refresh_token():
            token.refresh_token = refresh_token
        return token

    async def _request_token(
        self,
        config: AuthConfig,
        token_request: dict[str, str],
        action: str,
    ) -> Token:
        if config.is_confidential():
            token_request["client_secret"] = config.client_secret  # type: ignore

        http = self._http_client or httpx.AsyncClient(timeout=self._timeout)
        should_close = self._http_client is None

        try:
            response = await http.post(
                config.token_endpoint,
                data=token_request,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )

            if response.status_code != 200:
                raise TokenExchangeError(
                    f"{action} failed (HTTP {response.status_code}){_error_detail(response)}"
                )

            try:
                data: dict[str, Any] = response.json()
            except ValueError as e:
                raise TokenExchangeError(f"{action} returned a non-JSON response") from e

            if not isinstance(data, dict) or not data.get("access_token"):
                raise TokenExchangeError(f"{action} response is missing access_token")

            try:
                token = Token.from_token_response(data)
            except (TypeError, ValueError) as e:
                raise TokenExchangeError(f"{action} returned an invalid token response") from e

            logger.debug(f"{action} succeeded")
            return token

        except httpx.RequestError as e:
            raise TokenExchangeError(f"Network error during {action.lower()}: {e}") from e
        finally:
            if should_close:
                await http.aclose()


def _error_detail(response: httpx.Response) -> str:
    """Extract the standard OAuth error fields from a failed response.

    The raw body is never included since it may contain secrets.
    """
    try:
        error_data = response.json()
    except ValueError:
        return ""
    if not isinstance(error_data, dict):
        return ""
    return f": {error_data.get('error', '')} - {error_data.get('error_description', '')}"
