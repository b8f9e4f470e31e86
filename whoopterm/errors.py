"""Error taxonomy for whoopterm."""

from typing import Optional


class WhoopError(Exception):
    """Base class for all whoopterm errors."""


# Auth
class AuthError(WhoopError):
    """Authentication or authorization failure."""


class InvalidGrantError(AuthError):
    """The token endpoint rejected an authorization code or refresh token."""


class ReauthRequiredError(AuthError):
    """The user must run the authorization flow again."""

    def __init__(self, message: str = "Not authenticated. Run: whoopterm --auth"):
        super().__init__(message)


class CredentialCorruptError(AuthError):
    """The stored credential could not be read."""


# Network
class NetworkError(WhoopError):
    """Transient transport failure; safe to retry."""


class RequestTimeoutError(NetworkError):
    """A remote call exceeded its timeout or the connection failed."""


class ServerError(NetworkError):
    """The remote API answered with a 5xx status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitedError(NetworkError):
    """The remote API answered 429."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ApiError(WhoopError):
    """Non-transient API failure (4xx other than auth/rate limit, bad payload)."""

    def __init__(self, endpoint: str, message: str, status: Optional[int] = None):
        if status is None:
            super().__init__(f"{endpoint}: {message}")
        else:
            super().__init__(f"{endpoint} returned {status} - {message}")
        self.endpoint = endpoint
        self.status = status


# Sync
class SyncCancelledError(WhoopError):
    """The sync engine was cancelled while this work was in flight."""


# Cache
class CacheError(WhoopError):
    """Cache store failure."""


class CacheCorruptError(CacheError):
    """The cache file could not be parsed."""


class CacheIOError(CacheError):
    """The cache file could not be written durably."""


# Config
class ConfigError(WhoopError):
    """Invalid or incomplete configuration."""


class MissingCredentialsError(ConfigError):
    """WHOOP_CLIENT_ID / WHOOP_CLIENT_SECRET are not set."""
