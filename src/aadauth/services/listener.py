"""Local redirect listener for the authorization code flow.

Runs a single-shot HTTP server on the redirect URI's host and port. The
first redirect carrying a code or an error is captured, answered with a
static page, and handed back to the waiting caller.
"""

from __future__ import annotations

import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable
from urllib.parse import parse_qs, urlparse

from aadauth.models.errors import (
    AuthorizationDeniedError,
    AuthorizationTimeoutError,
)
from aadauth.models.flow import AuthorizationResponse
from aadauth.primitives.security import state_matches

logger = logging.getLogger(__name__)

SUCCESS_PAGE = (
    b"<html><body>Authenticated with Azure Active Directory. "
    b"Please close this page and return to your application.</body></html>"
)
FAILURE_PAGE = (
    b"<html><body>Authentication failed. "
    b"Please close this page and check your application for details.</body></html>"
)

# wake up this often while waiting, so Ctrl-C is handled promptly
_WAIT_SLICE = 0.5


class RedirectHandler(BaseHTTPRequestHandler):
    server: RedirectServer

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        query = parse_qs(parsed.query)

        def get_single_param(key: str) -> str | None:
            values = query.get(key, [])
            return values[0] if values else None

        response = AuthorizationResponse(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
        )

        if parsed.path.rstrip("/") != self.server.callback_path or not (
            response.code or response.error
        ):
            self.send_response(404)
            self.send_header("Content-Type", "text/plain")
            self.end_headers()
            self.wfile.write(b"Not found")
            return

        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.end_headers()
        self.wfile.write(SUCCESS_PAGE if response.is_success() else FAILURE_PAGE)
        self.server.capture(response)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug(f"Redirect listener: {format % args}")


class RedirectServer(HTTPServer):
    def __init__(self, host: str, port: int, callback_path: str):
        super().__init__((host, port), RedirectHandler)
        self.callback_path = callback_path
        self.captured: AuthorizationResponse | None = None
        self.received = threading.Event()

    def capture(self, response: AuthorizationResponse) -> None:
        if not self.received.is_set():
            self.captured = response
            self.received.set()


class RedirectListener:
    """Blocking listener that waits for one authorization redirect.

    Usage:
        listener = RedirectListener("http://localhost:1410/")
        code = listener.wait_for_code(authorize_uri)
    """

    def __init__(
        self,
        redirect_uri: str,
        timeout: float | None = 300.0,
        browse: Callable[[str], object] = webbrowser.open,
    ):
        """Initialize the redirect listener.

        Args:
            redirect_uri: Redirect URI registered for the app; must be local
            timeout: Seconds to wait for the redirect, or None to wait forever
            browse: Function used to open the authorize URI
        """
        parsed = urlparse(redirect_uri)
        host = parsed.hostname or "localhost"
        self.host = "127.0.0.1" if host == "localhost" else host
        self.port = parsed.port or 80
        self.callback_path = parsed.path.rstrip("/")
        self.timeout = timeout
        self.browse = browse

    def wait_for_code(self, authorize_uri: str, expected_state: str | None = None) -> str:
        """Open the authorize URI and wait for the redirect.

        Args:
            authorize_uri: Authorize endpoint URI to send the user to
            expected_state: State nonce sent in the authorize request

        Returns:
            The authorization code

        Raises:
            AuthorizationDeniedError: If the provider redirects with an error
                or the state doesn't match
            AuthorizationTimeoutError: If no redirect arrives in time
        """
        server = RedirectServer(self.host, self.port, self.callback_path)
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()

        try:
            logger.info("Waiting for authentication in browser... Press Ctrl+C to abort")
            self.browse(authorize_uri)
            response = self._wait(server)
        finally:
            server.shutdown()
            server.server_close()
            thread.join(timeout=5)

        if response.is_error() or response.code is None:
            message = response.error_description or response.error or ""
            raise AuthorizationDeniedError(f"Authentication failed. Message:\n{message}")

        if expected_state is not None and not state_matches(expected_state, response.state):
            raise AuthorizationDeniedError("State parameter mismatch in authorization redirect")

        logger.info("Authentication complete")
        return response.code

    def _wait(self, server: RedirectServer) -> AuthorizationResponse:
        waited = 0.0
        while server.captured is None:
            if self.timeout is not None and waited >= self.timeout:
                raise AuthorizationTimeoutError(
                    f"No authorization redirect received within {self.timeout} seconds"
                )
            server.received.wait(_WAIT_SLICE)
            waited += _WAIT_SLICE
        return server.captured
