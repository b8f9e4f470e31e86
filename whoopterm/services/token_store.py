"""Durable, atomic persistence of the OAuth credential (tokens.json)."""

import logging
import threading
from pathlib import Path
from typing import Optional

from whoopterm import crypto
from whoopterm.config import Config
from whoopterm.errors import CredentialCorruptError
from whoopterm.models import Credential, format_datetime, parse_datetime
from whoopterm.storage import atomic_write_json, read_json, remove_file

logger = logging.getLogger(__name__)


class TokenStore:
    """Read/write the credential file; secrets are Fernet-encrypted when a key is configured."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else Config.tokens_path()
        self._lock = threading.Lock()

    def load(self) -> Optional[Credential]:
        """Load the stored credential. Returns None if not found.

        A file that cannot be parsed or decrypted is deleted and
        CredentialCorruptError is raised.
        """
        with self._lock:
            if not self.path.exists():
                return None
            try:
                return self._decode(read_json(self.path))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Discarding unreadable credential file {self.path}: {e}")
                remove_file(self.path)
                raise CredentialCorruptError(f"Stored credential is corrupt: {e}") from e

    def save(self, credential: Credential) -> None:
        """Persist the credential atomically."""
        with self._lock:
            atomic_write_json(self.path, self._encode(credential))
        logger.info(f"Saved credential (expires {format_datetime(credential.expires_at)})")

    def delete(self) -> bool:
        """Remove the stored credential."""
        with self._lock:
            removed = remove_file(self.path)
        if removed:
            logger.info("Deleted stored credential")
        return removed

    @staticmethod
    def _encode(credential: Credential) -> dict:
        encrypted = crypto.is_enabled()
        access_token = credential.access_token
        refresh_token = credential.refresh_token
        if encrypted:
            access_token = crypto.encrypt_secret(access_token)
            refresh_token = crypto.encrypt_secret(refresh_token)
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": format_datetime(credential.expires_at),
            "scope": credential.scope,
            "encrypted": encrypted,
        }

    @staticmethod
    def _decode(data: dict) -> Credential:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")

        access_token = data["access_token"]
        refresh_token = data.get("refresh_token")
        if data.get("encrypted"):
            access_token = crypto.decrypt_secret(access_token)
            refresh_token = crypto.decrypt_secret(refresh_token)

        if not access_token or not isinstance(access_token, str):
            raise ValueError("access_token is missing")
        expires_at = parse_datetime(data["expires_at"])
        if expires_at is None:
            raise ValueError("expires_at is missing")

        return Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            scope=data.get("scope") or "",
        )
