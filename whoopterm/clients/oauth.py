"""OAuth2 token endpoint client (authorization-code and refresh-token grants)."""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import requests

from whoopterm.clients.base import BaseClient
from whoopterm.config import Config
from whoopterm.errors import ApiError, InvalidGrantError

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "/oauth/oauth2/token"


class OAuthClient(BaseClient):
    """Narrow wrapper around the WHOOP OAuth2 endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(session=session, timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri or Config.REDIRECT_URI

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(Config.SCOPES),
            "state": state,
        }
        return f"{Config.AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens."""
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token for a new access token."""
        return self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": "offline",
        })

    def _token_request(self, data: dict[str, Any]) -> dict[str, Any]:
        payload = {
            **data,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        response = self._send("POST", Config.TOKEN_URL, TOKEN_ENDPOINT, data=payload)

        if response.status_code in (400, 401):
            body = self._error_body(response)
            error = body.get("error", "")
            if error in ("invalid_grant", "invalid_request", "unauthorized_client") or response.status_code == 401:
                description = body.get("error_description") or error or "token request rejected"
                logger.error(f"Token exchange rejected ({data['grant_type']}): {description}")
                raise InvalidGrantError(description)

        self._check(response, TOKEN_ENDPOINT)
        token = self._json(response, TOKEN_ENDPOINT)
        if not isinstance(token, dict) or "access_token" not in token:
            raise ApiError(TOKEN_ENDPOINT, "response has no access_token")
        return token

    @staticmethod
    def _error_body(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
