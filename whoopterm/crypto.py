"""Encryption of stored OAuth secrets using Fernet."""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from whoopterm.config import Config

logger = logging.getLogger(__name__)


def get_key() -> Optional[bytes]:
    """Get encryption key from environment, or None when tokens are stored in clear."""
    key = Config.ENCRYPTION_KEY
    if not key:
        return None
    return key.encode() if isinstance(key, str) else key


def is_enabled() -> bool:
    return get_key() is not None


def generate_key() -> str:
    """Generate a new key suitable for WHOOP_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()


def get_fernet() -> Fernet:
    """Get Fernet instance with the encryption key."""
    key = get_key()
    if key is None:
        raise ValueError("WHOOP_ENCRYPTION_KEY is not set")
    try:
        return Fernet(key)
    except ValueError as e:
        raise ValueError("WHOOP_ENCRYPTION_KEY is not a valid Fernet key") from e


def encrypt_secret(secret):
    """Encrypt a secret string."""
    if not secret:
        return None

    f = get_fernet()
    encrypted = f.encrypt(secret.encode())
    return encrypted.decode()


def decrypt_secret(encrypted_secret):
    """Decrypt an encrypted secret string."""
    if not encrypted_secret:
        return None

    f = get_fernet()
    try:
        decrypted = f.decrypt(encrypted_secret.encode())
        return decrypted.decode()
    except InvalidToken as e:
        logger.error("Failed to decrypt stored secret")
        raise ValueError("Invalid encryption key or corrupted data") from e
