"""Shared HTTP plumbing for WHOOP clients."""

import logging
from typing import Any, Optional

import requests

from whoopterm.config import Config
from whoopterm.errors import (
    ApiError,
    AuthError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
)

logger = logging.getLogger(__name__)


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _excerpt(response: requests.Response, limit: int = 200) -> str:
    body = response.text or ""
    return body[:limit] if body else "Empty response"


class BaseClient:
    """requests.Session wrapper that maps transport failures onto the error taxonomy."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or Config.REQUEST_TIMEOUT

    def _send(self, method: str, url: str, endpoint: str, **kwargs) -> requests.Response:
        """Send a request; raises NetworkError subclasses for transient failures."""
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise RequestTimeoutError(f"{endpoint} timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise RequestTimeoutError(f"{endpoint} connection failed: {e}") from e
        except requests.RequestException as e:
            raise ApiError(endpoint, f"request failed: {e}") from e

        status = response.status_code
        if status == 429:
            raise RateLimitedError(f"{endpoint} rate limited", retry_after=_retry_after(response))
        if status >= 500:
            raise ServerError(f"{endpoint} returned {status}", status=status)
        return response

    def _check(self, response: requests.Response, endpoint: str) -> None:
        """Raise for non-success statuses the transport layer did not handle."""
        status = response.status_code
        if status in (401, 403):
            raise AuthError(f"{endpoint} rejected the access token ({status})")
        if not 200 <= status < 300:
            raise ApiError(endpoint, _excerpt(response, 500), status=status)

    def _json(self, response: requests.Response, endpoint: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                endpoint, f"Failed to parse JSON (body excerpt: {_excerpt(response)})"
            ) from e
