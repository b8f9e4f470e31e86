"""Configuration management for whoopterm."""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from whoopterm.errors import MissingCredentialsError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

APP_NAME = "whoopterm"


def _get_int_env(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _default_data_dir() -> Path:
    """Per-OS application data directory."""
    override = os.environ.get("WHOOP_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif os.name == "nt":
        base = Path(os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming")
    else:
        base = Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")
    return base / APP_NAME


class Config:
    """Application configuration."""

    # Base paths
    DATA_DIR = _default_data_dir()

    # OAuth application
    CLIENT_ID = os.environ.get("WHOOP_CLIENT_ID")
    CLIENT_SECRET = os.environ.get("WHOOP_CLIENT_SECRET")
    REDIRECT_URI = os.environ.get("WHOOP_REDIRECT_URI", "http://localhost:8080/callback")
    SCOPES = (
        "read:recovery",
        "read:sleep",
        "read:workout",
        "read:cycles",
        "read:profile",
        "offline",
    )

    # Security
    ENCRYPTION_KEY = os.environ.get("WHOOP_ENCRYPTION_KEY")

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # API Settings
    API_BASE = "https://api.prod.whoop.com/developer"
    AUTH_URL = "https://api.prod.whoop.com/oauth/oauth2/auth"
    TOKEN_URL = "https://api.prod.whoop.com/oauth/oauth2/token"
    MAX_RETRY_COUNT = 3
    RETRY_DELAY_BASE = 1  # seconds
    RETRY_DELAY_MAX = 30  # seconds
    REQUEST_TIMEOUT = 30  # seconds
    PAGE_LIMIT = 25
    MAX_PAGES = 10
    LOOKBACK_DAYS = 7

    # Auth
    TOKEN_EXPIRY_SKEW = 300  # seconds before expiry that trigger a refresh
    AUTH_CALLBACK_TIMEOUT = 300  # seconds to wait for the browser redirect

    # Sync / dashboard
    CACHE_TTL_MINUTES = 30
    SYNC_CONCURRENCY = 4
    REFRESH_INTERVAL = 300  # seconds between background syncs
    TICK_RATE = 0.25  # seconds

    @classmethod
    def tokens_path(cls) -> Path:
        return cls.DATA_DIR / "tokens.json"

    @classmethod
    def cache_path(cls) -> Path:
        return cls.DATA_DIR / "cache.json"

    @classmethod
    def preferences_path(cls) -> Path:
        return cls.DATA_DIR / "config.json"

    @classmethod
    def logs_dir(cls) -> Path:
        return cls.DATA_DIR / "logs"

    @classmethod
    def ensure_directories(cls):
        """Ensure all required directories exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.logs_dir().mkdir(parents=True, exist_ok=True)

    @classmethod
    def require_credentials(cls) -> tuple[str, str]:
        """Return the OAuth client id/secret or fail before any network activity."""
        missing = [
            name
            for name, value in (
                ("WHOOP_CLIENT_ID", cls.CLIENT_ID),
                ("WHOOP_CLIENT_SECRET", cls.CLIENT_SECRET),
            )
            if not value
        ]
        if missing:
            raise MissingCredentialsError(
                f"Missing {', '.join(missing)}. Set them in the environment or a .env file."
            )
        return cls.CLIENT_ID, cls.CLIENT_SECRET

    def __repr__(self):
        return f"Config(DATA_DIR={self.DATA_DIR})"


# Optional user preferences stored in config.json
DEFAULT_PREFERENCES: dict[str, Any] = {
    "cache_ttl_minutes": Config.CACHE_TTL_MINUTES,
    "refresh_interval_seconds": Config.REFRESH_INTERVAL,
    "default_view": "today",
}


def load_preferences(path: Optional[Path] = None) -> dict[str, Any]:
    """Load preferences: defaults < config.json < environment."""
    path = path or Config.preferences_path()
    prefs = dict(DEFAULT_PREFERENCES)

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable preferences file {path}: {e}")
            data = {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring preferences file {path}: expected a JSON object")
            data = {}

        for key, value in data.items():
            if key not in DEFAULT_PREFERENCES:
                logger.warning(f"Unknown preference '{key}' ignored")
                continue
            expected = type(DEFAULT_PREFERENCES[key])
            if expected is int and (isinstance(value, bool) or not isinstance(value, int) or value <= 0):
                logger.warning(f"Preference '{key}' must be a positive integer, got {value!r}")
                continue
            if expected is str and not isinstance(value, str):
                logger.warning(f"Preference '{key}' must be a string, got {value!r}")
                continue
            prefs[key] = value

    env_ttl = _get_int_env("WHOOP_CACHE_TTL", None)
    if env_ttl is not None and env_ttl > 0:
        prefs["cache_ttl_minutes"] = env_ttl

    return prefs
