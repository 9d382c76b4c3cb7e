"""Loopback HTTP listener that receives the OAuth authorization callback.

The listener binds an OS-assigned port on 127.0.0.1 and lives for exactly
one authorization run: it serves requests until the first request to the
callback path arrives (or the caller asks it to stop), then it is closed.
Requests to other paths, such as a browser's favicon request, get a 404 and
are not consumed.
"""

import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

from google_mcp.errors import AuthorizationError

logger = logging.getLogger(__name__)

DEFAULT_OAUTH_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"

# How often the serving loop checks for a stop request (seconds).
POLL_INTERVAL = 0.25


class _CallbackResult:
    def __init__(self, code: str | None = None, error: str | None = None) -> None:
        self.code = code
        self.error = error


class _CallbackHTTPServer(HTTPServer):
    """HTTPServer carrying the state of one authorization run."""

    def __init__(self, address: tuple[str, int], expected_state: str | None) -> None:
        super().__init__(address, _OAuthCallbackHandler)
        self.expected_state = expected_state
        self.result: _CallbackResult | None = None


class _OAuthCallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect."""

    server: _CallbackHTTPServer

    # Socket timeout so an idle browser pre-connect cannot stall the loop.
    timeout = 5

    def log_message(self, format: str, *args) -> None:
        """Route HTTP server logs to the module logger."""
        logger.debug("callback server: " + format, *args)

    def _respond(self, status: int, body: str) -> None:
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(f"<html><body><p>{body}</p></body></html>".encode())

    def do_GET(self) -> None:
        """Handle GET request from OAuth redirect."""
        parsed = urlparse(self.path)
        if parsed.path != CALLBACK_PATH or self.server.result is not None:
            self.send_response(404)
            self.end_headers()
            self.wfile.write(b"Not Found")
            return

        query = parse_qs(parsed.query)

        if "error" in query:
            error = query["error"][0]
            self.server.result = _CallbackResult(error=f"oauth error: {error}")
            self._respond(400, f"Authorization failed: {error}. You can close this tab.")
            return

        state = query.get("state", [None])[0]
        if self.server.expected_state is not None and state != self.server.expected_state:
            self.server.result = _CallbackResult(error="oauth state mismatch")
            self._respond(400, "Authorization failed: state mismatch. You can close this tab.")
            return

        code = query.get("code", [""])[0]
        if not code:
            self.server.result = _CallbackResult(error="no authorization code received")
            self._respond(400, "No authorization code received. You can close this tab.")
            return

        self.server.result = _CallbackResult(code=code)
        self._respond(200, "Authorization successful! You can close this tab.")


class OAuthCallbackServer:
    """Single-use OAuth callback listener.

    Example:
        ```python
        stop = threading.Event()
        with OAuthCallbackServer(expected_state=state) as callback:
            flow.redirect_uri = callback.redirect_uri
            code = callback.wait(stop)
        ```
    """

    def __init__(self, expected_state: str | None = None, host: str = DEFAULT_OAUTH_HOST) -> None:
        """Bind the listener on an OS-assigned port.

        Args:
            expected_state: OAuth state value the callback must echo back.
                None disables the check.
            host: Loopback address to bind.

        Raises:
            AuthorizationError: If the listener cannot be started.
        """
        try:
            self._httpd = _CallbackHTTPServer((host, 0), expected_state)
        except OSError as e:
            raise AuthorizationError(f"starting local listener: {e}") from e
        self._httpd.timeout = POLL_INTERVAL
        self._host = host
        logger.debug(f"OAuth callback listener on {self.redirect_uri}")

    def __enter__(self) -> "OAuthCallbackServer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def port(self) -> int:
        """The bound port."""
        return self._httpd.server_address[1]

    @property
    def redirect_uri(self) -> str:
        """Redirect URI to register with the authorization request."""
        return f"http://{self._host}:{self.port}{CALLBACK_PATH}"

    def wait(self, stop: threading.Event) -> str | None:
        """Serve requests until one callback arrives or stop is set.

        Blocking; intended to run in a worker thread.

        Args:
            stop: Set by the caller to abandon the wait.

        Returns:
            The authorization code, or None if stopped before a callback.

        Raises:
            AuthorizationError: If the callback carried an error, a mismatched
                state, or no code.
        """
        while self._httpd.result is None and not stop.is_set():
            self._httpd.handle_request()

        result = self._httpd.result
        if result is None:
            return None
        if result.error:
            raise AuthorizationError(result.error)
        return result.code

    def close(self) -> None:
        """Close the listening socket."""
        self._httpd.server_close()
        logger.debug(f"OAuth callback listener on port {self.port} closed")
