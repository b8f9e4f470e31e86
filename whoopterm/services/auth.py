"""Auth Manager: OAuth credential lifecycle with silent refresh."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from whoopterm.clients.oauth import TOKEN_ENDPOINT, OAuthClient
from whoopterm.config import Config
from whoopterm.errors import (
    ApiError,
    AuthError,
    CredentialCorruptError,
    InvalidGrantError,
    NetworkError,
    ReauthRequiredError,
)
from whoopterm.models import Credential, utc_now
from whoopterm.services.token_store import TokenStore

logger = logging.getLogger(__name__)

# Auth states
AUTH_UNAUTHENTICATED = "unauthenticated"
AUTH_AUTHORIZATION_PENDING = "authorization_pending"
AUTH_AUTHENTICATED = "authenticated"
AUTH_EXPIRING = "expiring"
AUTH_REFRESHING = "refreshing"
AUTH_FAILED = "failed"


class AuthManager:
    """Guarantees a valid access token to callers or fails explicitly.

    All state inspection and the refresh exchange happen under one lock, so
    concurrent callers during a refresh wait for its outcome instead of
    issuing their own (refresh tokens are single use on most servers).
    """

    def __init__(
        self,
        token_store: TokenStore,
        oauth_client: OAuthClient,
        skew: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.token_store = token_store
        self.oauth_client = oauth_client
        self.skew = Config.TOKEN_EXPIRY_SKEW if skew is None else skew
        self._clock = clock
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None
        self._state = AUTH_UNAUTHENTICATED
        self._load()

    @property
    def state(self) -> str:
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def _load(self) -> None:
        try:
            credential = self.token_store.load()
        except CredentialCorruptError as e:
            logger.warning(f"Starting unauthenticated: {e}")
            return

        if credential is None:
            logger.info("No stored credential")
            return

        self._credential = credential
        if credential.is_valid(self._clock(), self.skew):
            self._state = AUTH_AUTHENTICATED
        else:
            self._state = AUTH_EXPIRING
        logger.debug(f"Loaded stored credential, state={self._state}")

    def authenticate(self, code: str) -> Credential:
        """Exchange an authorization code and persist the resulting credential."""
        with self._lock:
            previous_state = self._state
            self._state = AUTH_AUTHORIZATION_PENDING
            try:
                token = self.oauth_client.exchange_code(code)
                now = self._clock()
                credential = Credential.from_token_response(token, now)
                if not credential.is_valid(now, self.skew):
                    raise ApiError(TOKEN_ENDPOINT, "issued token expires inside the skew window")
                self.token_store.save(credential)
            except InvalidGrantError:
                self._state = AUTH_FAILED if previous_state == AUTH_FAILED else AUTH_UNAUTHENTICATED
                raise
            except Exception:
                self._state = previous_state
                raise

            self._credential = credential
            self._state = AUTH_AUTHENTICATED
            logger.info("Authentication successful")
            return credential

    def ensure_valid(self) -> Credential:
        """Return a credential valid for at least ``skew`` seconds, refreshing if needed.

        Raises:
            ReauthRequiredError: not authenticated, or the refresh was rejected.
            NetworkError: the refresh exchange failed transiently; the credential is kept.
        """
        with self._lock:
            if self._state in (AUTH_UNAUTHENTICATED, AUTH_FAILED) or self._credential is None:
                raise ReauthRequiredError()

            now = self._clock()
            if self._credential.is_valid(now, self.skew):
                self._state = AUTH_AUTHENTICATED
                return self._credential

            self._state = AUTH_EXPIRING
            return self._refresh_locked()

    def _refresh_locked(self) -> Credential:
        current = self._credential
        if not current.refresh_token:
            self._fail("Stored credential has no refresh token")

        self._state = AUTH_REFRESHING
        logger.info("Access token expiring, refreshing")
        try:
            token = self.oauth_client.refresh(current.refresh_token)
        except InvalidGrantError as e:
            self._fail(f"Refresh token rejected: {e}")
        except (NetworkError, ApiError) as e:
            logger.warning(f"Token refresh failed: {e}")
            self._state = AUTH_EXPIRING
            raise
        except AuthError as e:
            self._fail(f"Token refresh failed: {e}")

        now = self._clock()
        credential = Credential.from_token_response(token, now, previous=current)
        if not credential.is_valid(now, self.skew):
            self._fail("Refreshed token expires inside the skew window")

        # The old refresh token is spent; keep the new one in memory even if persisting fails.
        self._credential = credential
        self._state = AUTH_AUTHENTICATED
        self.token_store.save(credential)
        logger.info("Access token refreshed")
        return credential

    def _fail(self, reason: str):
        """Enter the failed state and drop the unusable credential."""
        logger.error(f"{reason}; re-authorization required")
        self._state = AUTH_FAILED
        self._credential = None
        self.token_store.delete()
        raise ReauthRequiredError(f"{reason}. Run: whoopterm --auth")

    def revoke(self) -> None:
        """Forget the credential locally."""
        with self._lock:
            self._credential = None
            self._state = AUTH_UNAUTHENTICATED
            self.token_store.delete()
        logger.info("Credential revoked")
