"""Interactive authorization-code flow: browser + one-shot localhost callback."""

import logging
import secrets
import time
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from whoopterm.config import Config
from whoopterm.errors import AuthError
from whoopterm.models import Credential
from whoopterm.services.auth import AuthManager

logger = logging.getLogger(__name__)

SUCCESS_PAGE = b"<html><body><h3>Authentication successful!</h3>You can close this window.</body></html>"
FAILURE_PAGE = b"<html><body><h3>Authentication failed.</h3>Check the terminal for details.</body></html>"


class _CallbackHandler(BaseHTTPRequestHandler):
    """Captures the query string of the redirect on the callback path."""

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self.send_response(404)
            self.end_headers()
            return

        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        self.server.callback_params = params
        ok = "code" in params and "error" not in params

        self.send_response(200 if ok else 400)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(SUCCESS_PAGE if ok else FAILURE_PAGE)

    def log_message(self, format, *args):
        logger.debug("callback: " + format % args)


def wait_for_callback(redirect_uri: str, timeout: float) -> dict[str, str]:
    """Serve the redirect URI until one callback arrives or ``timeout`` elapses."""
    parsed = urlparse(redirect_uri)
    host = parsed.hostname or "localhost"
    port = parsed.port or 80

    server = HTTPServer((host, port), _CallbackHandler)
    server.callback_path = parsed.path or "/"
    server.callback_params = None
    server.timeout = 1.0

    deadline = time.monotonic() + timeout
    try:
        while server.callback_params is None:
            if time.monotonic() > deadline:
                raise AuthError(f"No authorization callback received within {int(timeout)}s")
            server.handle_request()
    finally:
        server.server_close()

    return server.callback_params


def run_authorization_flow(
    auth_manager: AuthManager,
    open_browser: Callable[[str], bool] = webbrowser.open,
    on_url: Optional[Callable[[str], None]] = None,
    wait: Callable[[str, float], dict[str, str]] = wait_for_callback,
    timeout: Optional[float] = None,
) -> Credential:
    """Open the consent page, collect the code from the redirect and exchange it."""
    oauth_client = auth_manager.oauth_client
    state = secrets.token_urlsafe(16)
    url = oauth_client.authorization_url(state)

    if on_url:
        on_url(url)
    try:
        open_browser(url)
    except webbrowser.Error as e:
        logger.warning(f"Could not open browser: {e}")

    params = wait(oauth_client.redirect_uri, timeout or Config.AUTH_CALLBACK_TIMEOUT)

    if "error" in params:
        description = params.get("error_description") or params["error"]
        raise AuthError(f"Authorization denied: {description}")
    if params.get("state") != state:
        raise AuthError("Invalid or expired state in authorization callback")
    code = params.get("code")
    if not code:
        raise AuthError("Authorization callback did not include a code")

    return auth_manager.authenticate(code)
