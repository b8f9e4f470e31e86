"""WHOOP developer API client (metric endpoints)."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

import requests

from whoopterm.clients.base import BaseClient
from whoopterm.config import Config
from whoopterm.errors import ApiError, SyncCancelledError

logger = logging.getLogger(__name__)

PROFILE_PATH = "/v2/user/profile/basic"


class WhoopClient(BaseClient):
    """Client for the WHOOP developer API."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(session=session, timeout=timeout)
        self.base_url = (base_url or Config.API_BASE).rstrip("/")

    def _get(self, path: str, token: str, params: Optional[dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}
        response = self._send("GET", url, path, params=params, headers=headers)
        self._check(response, path)
        return self._json(response, path)

    def get_object(self, path: str, token: str) -> dict[str, Any]:
        """Fetch a single JSON object, e.g. the basic profile."""
        data = self._get(path, token)
        if not isinstance(data, dict):
            raise ApiError(path, "expected a JSON object")
        return data

    def get_collection(
        self,
        path: str,
        token: str,
        start: datetime,
        end: datetime,
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> list[dict[str, Any]]:
        """Fetch every record in [start, end], following ``next_token`` pagination.

        ``should_abort`` is checked before each page; when it returns True the
        fetch stops with SyncCancelledError.
        """
        records: list[dict[str, Any]] = []
        params: dict[str, Any] = {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "limit": Config.PAGE_LIMIT,
        }

        for _ in range(Config.MAX_PAGES):
            if should_abort and should_abort():
                raise SyncCancelledError(path)
            data = self._get(path, token, params=dict(params))
            if not isinstance(data, dict):
                raise ApiError(path, "expected a JSON object")

            batch = data.get("records") or []
            if not isinstance(batch, list):
                raise ApiError(path, "'records' is not a list")
            records.extend(batch)

            next_token = data.get("next_token")
            if not next_token:
                break
            params["nextToken"] = next_token
        else:
            logger.warning(f"{path}: stopped after {Config.MAX_PAGES} pages")

        logger.info(f"Retrieved {len(records)} records from {path}")
        return records

    def get_profile(self, token: str) -> dict[str, Any]:
        return self.get_object(PROFILE_PATH, token)
