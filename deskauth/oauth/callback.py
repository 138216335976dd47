"""Localhost callback server for OAuth redirects.

This module provides an ephemeral HTTP server that receives the OAuth
authorization callback for a single flow. It:
- Binds an OS-assigned port on the loopback interface
- Answers only on a secret, per-flow path
- Validates the state parameter before accepting a callback
- Hands exactly one result to the waiting flow
- Returns a user-friendly HTML page with success/error message
"""

import asyncio
import hmac
import html
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"

# Seconds allowed for a client to send its request head
REQUEST_READ_TIMEOUT = 10.0

# Seconds allowed for the server to close during shutdown
SHUTDOWN_TIMEOUT = 5.0

INVALID_RESPONSE_ERROR = "invalid_response"


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class CallbackServerError(CallbackError):
    """The local callback server could not be started."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


@dataclass
class CallbackResult:
    """Result from OAuth callback.

    Exactly one of code or error is set.

    Attributes:
        code: The authorization code from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if callback was successful."""
        return bool(self.code) and self.error is None

    @classmethod
    def from_params(cls, params: dict[str, list[str]]) -> "CallbackResult":
        """Build a result from the query of a state-verified callback."""
        error = _first(params, "error")
        if error:
            return cls(error=error, error_description=_first(params, "error_description"))

        code = _first(params, "code")
        if code:
            return cls(code=code)

        return cls(
            error=INVALID_RESPONSE_ERROR,
            error_description="OAuth server returned neither a code nor an error",
        )


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name, [])
    return values[0] if values else None


# HTML templates for callback responses
SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authentication Successful</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f4f6f8;
        }
        .card {
            background: white;
            padding: 40px 60px;
            border-radius: 12px;
            text-align: center;
            box-shadow: 0 4px 20px rgba(0,0,0,0.1);
        }
        h1 { color: #1a1a1a; margin: 0 0 8px 0; font-size: 22px; }
        p { color: #666; margin: 0; }
    </style>
</head>
<body>
    <div class="card">
        <h1>Authentication successful</h1>
        <p>You may close this window.</p>
    </div>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authentication Failed</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f4f6f8;
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 12px;
            text-align: center;
            box-shadow: 0 4px 20px rgba(0,0,0,0.1);
            max-width: 420px;
        }}
        h1 {{ color: #1a1a1a; margin: 0 0 8px 0; font-size: 22px; }}
        p {{ color: #666; margin: 0 0 16px 0; }}
        .error {{
            background: #fee;
            padding: 12px;
            border-radius: 8px;
            color: #c0392b;
            font-family: monospace;
            font-size: 14px;
        }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Authentication failed</h1>
        <p>{message}</p>
        <div class="error">{error}: {description}</div>
    </div>
</body>
</html>"""


def render_error_page(error: str, description: str | None, message: str) -> str:
    """Render the error page, HTML-escaping all provider-supplied text."""
    return ERROR_HTML.format(
        message=html.escape(message),
        error=html.escape(error),
        description=html.escape(description or "No description provided"),
    )


class LocalhostCallbackServer:
    """Ephemeral HTTP server for the callback of one OAuth flow.

    Only requests for the secret path are considered. On that path:
    - no state: redirect to the authorization URL (some providers probe
      the redirect URL, and browsers may replay navigation)
    - wrong state: 412 Precondition Failed, flow keeps waiting
    - right state: the error, code, or a malformed-response error is
      offered to a single-slot handoff; the first offer wins

    Usage:
        async with LocalhostCallbackServer(path, state) as server:
            server.authorization_url = build_url(server.redirect_uri)
            # Show the authorization URL to the user
            result = await server.wait_for_callback()
    """

    def __init__(
        self,
        path: str,
        state: str,
        authorization_url: str = "",
        timeout: float | None = None,
        host: str = DEFAULT_HOST,
    ):
        """Initialize callback server.

        Args:
            path: Secret URL path to listen on, starting with "/"
            state: Expected value of the state parameter
            authorization_url: Where to send requests that carry no state
            timeout: Seconds to wait for the callback (None waits forever)
            host: Loopback address to bind
        """
        if not path.startswith("/"):
            raise ValueError(f"Callback path must start with '/', got {path!r}")

        self.path = path
        self.state = state
        self.authorization_url = authorization_url
        self.timeout = timeout
        self.host = host
        self.port: int = 0
        self.redirect_uri: str = ""

        self._server: asyncio.Server | None = None
        self._result: asyncio.Future[CallbackResult] | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    async def start(self) -> str:
        """Start the callback server.

        Uses port=0 to let the OS atomically assign an available port.

        Returns:
            The redirect URI to use in the authorization request

        Raises:
            CallbackServerError: If the socket cannot be bound
        """
        self._result = asyncio.get_running_loop().create_future()

        try:
            self._server = await asyncio.start_server(self._handle_connection, self.host, 0)
        except OSError as e:
            raise CallbackServerError(f"Creating socket for local callback server: {e}") from e

        sockets = self._server.sockets
        if not sockets:
            await self.stop()
            raise CallbackServerError("Failed to start callback server: no sockets created")

        self.port = sockets[0].getsockname()[1]
        self.redirect_uri = f"http://{self.host}:{self.port}{self.path}"

        logger.debug(f"Callback server listening on {self.host}:{self.port}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Stop the callback server.

        Idle keep-alive or speculative browser connections are closed so
        shutdown cannot hang on them.
        """
        if self._server is None:
            return

        server, self._server = self._server, None
        server.close()
        for writer in list(self._writers):
            writer.close()

        try:
            await asyncio.wait_for(server.wait_closed(), timeout=SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Callback server did not close within {SHUTDOWN_TIMEOUT} seconds")

        logger.debug("Callback server stopped")

    @property
    def is_running(self) -> bool:
        """Whether the server is currently accepting connections."""
        return self._server is not None

    def offer(self, result: CallbackResult) -> bool:
        """Hand a result to the waiting flow.

        Only the first offer is kept; later ones are dropped.

        Returns:
            True if the result was accepted
        """
        if self._result is None or self._result.done():
            logger.debug("Dropping duplicate OAuth callback")
            return False

        self._result.set_result(result)
        return True

    async def wait_for_callback(self) -> CallbackResult:
        """Wait for the OAuth callback.

        Returns:
            CallbackResult with the authorization code or error

        Raises:
            CallbackError: If the server was never started
            CallbackTimeoutError: If the timeout is reached
        """
        if self._result is None:
            raise CallbackError("Server not started")

        if self.timeout is None:
            return await self._result

        try:
            return await asyncio.wait_for(self._result, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"Timeout waiting for OAuth callback after {self.timeout} seconds"
            ) from None

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle incoming HTTP connection."""
        self._writers.add(writer)
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=REQUEST_READ_TIMEOUT)
            if not request_line:
                return

            # e.g. "GET /3f9c...?state=...&code=... HTTP/1.1"
            parts = request_line.decode("utf-8", errors="replace").strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, target = parts[0], parts[1]

            # Consume headers
            while True:
                header_line = await asyncio.wait_for(reader.readline(), timeout=REQUEST_READ_TIMEOUT)
                if header_line in (b"\r\n", b"\n", b""):
                    break

            await self._handle_request(writer, method, target)

        except asyncio.TimeoutError:
            logger.debug("Callback client did not send a request in time")

        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")
            try:
                await self._send_response(
                    writer, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal error"
                )
            except Exception:
                pass

        finally:
            self._writers.discard(writer)
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass

    async def _handle_request(self, writer: asyncio.StreamWriter, method: str, target: str) -> None:
        parsed = urlparse(target)

        if not hmac.compare_digest(parsed.path.encode(), self.path.encode()):
            await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
            return

        if method != "GET":
            await self._send_response(writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")
            return

        params = parse_qs(parsed.query)
        state = _first(params, "state")

        if not state:
            if not self.authorization_url:
                await self._send_response(
                    writer, HTTPStatus.SERVICE_UNAVAILABLE, "Authorization not started"
                )
                return
            await self._send_redirect(writer, self.authorization_url)
            return

        if not hmac.compare_digest(state.encode(), self.state.encode()):
            logger.warning("Rejected OAuth callback with mismatched state")
            await self._send_html_response(
                writer,
                HTTPStatus.PRECONDITION_FAILED,
                render_error_page(
                    "invalid_state",
                    "The state parameter does not match this sign-in attempt.",
                    "This response does not belong to a sign-in started here.",
                ),
            )
            return

        result = CallbackResult.from_params(params)

        # Respond before handing off so the page is delivered even if the
        # flow shuts the server down immediately afterwards. The result is
        # handed off even if the browser has gone away.
        try:
            if result.is_success():
                await self._send_html_response(writer, HTTPStatus.OK, SUCCESS_HTML)
            else:
                await self._send_html_response(
                    writer,
                    HTTPStatus.OK,
                    render_error_page(
                        result.error or "unknown_error",
                        result.error_description,
                        "An error occurred during authorization.",
                    ),
                )
        finally:
            self.offer(result)

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        payload = body.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + payload)
        await writer.drain()

    async def _send_redirect(self, writer: asyncio.StreamWriter, location: str) -> None:
        """Send a 302 redirect."""
        status = HTTPStatus.FOUND
        response = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Location: {location}\r\n"
            f"Content-Length: 0\r\n"
            f"Cache-Control: no-store\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(response.encode("utf-8"))
        await writer.drain()

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Cache-Control: no-store\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()
