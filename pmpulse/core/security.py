"""
Encryption of AppFolio credentials at rest.

Secrets are stored as Fernet tokens and decrypted only for the duration of an API call.
"""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from pmpulse.core.config import settings

logger = logging.getLogger(__name__)

# Sample values that must never be used as a real key
PLACEHOLDER_KEYS = {"change-me-to-a-fernet-key"}


class EncryptionKeyError(Exception):
    """ENCRYPTION_KEY is missing or is not a Fernet key"""


class CredentialDecryptionError(Exception):
    """Stored credential cannot be decrypted with the configured key"""


def _fernet(key: Optional[str] = None) -> Fernet:
    raw_key = key if key is not None else settings.ENCRYPTION_KEY
    if not raw_key or raw_key in PLACEHOLDER_KEYS:
        raise EncryptionKeyError(
            "ENCRYPTION_KEY is not set; generate one with cryptography.fernet.Fernet.generate_key()"
        )
    try:
        return Fernet(raw_key.encode() if isinstance(raw_key, str) else raw_key)
    except (ValueError, TypeError) as e:
        raise EncryptionKeyError("ENCRYPTION_KEY is not a valid Fernet key") from e


def encrypt_secret(plain_text: str, key: Optional[str] = None) -> str:
    """Encrypt a secret for storage"""
    return _fernet(key).encrypt(plain_text.encode()).decode()


def decrypt_secret(token: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """Decrypt a stored secret; None stays None"""
    if not token:
        return None
    try:
        return _fernet(key).decrypt(token.encode()).decode()
    except InvalidToken as e:
        logger.error("Stored credential could not be decrypted; check ENCRYPTION_KEY")
        raise CredentialDecryptionError("Stored credential could not be decrypted") from e
