"""Credential encryption for export destination secrets.

Credentials are stored as Fernet tokens. The Fernet key is derived from
ENCRYPTION_KEY (falling back to SESSION_SECRET) so operators can supply any
passphrase-length secret.
"""
import base64
import hashlib
import json
import os
import logging
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when the key is missing or a token cannot be decrypted."""
    pass


def get_encryption_secret() -> Optional[str]:
    return os.getenv("ENCRYPTION_KEY") or os.getenv("SESSION_SECRET")


def derive_fernet_key(secret: str) -> bytes:
    """urlsafe-base64(SHA-256(secret)), the 32-byte key Fernet expects."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def mask_secret(value: Optional[str]) -> str:
    """Show only the last 4 characters of a secret."""
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return "****" + value[-4:]


class CredentialCipher:
    """Encrypts and decrypts credential blobs.

    Args:
        secret: Key material. Defaults to ENCRYPTION_KEY / SESSION_SECRET.
    """

    def __init__(self, secret: Optional[str] = None):
        secret = secret or get_encryption_secret()
        if not secret:
            raise EncryptionError(
                "ENCRYPTION_KEY or SESSION_SECRET environment variable must be set "
                "to store export credentials"
            )
        self._fernet = Fernet(derive_fernet_key(secret))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        if not token:
            return ""
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            logger.error("Credential decryption failed: token unreadable with current key")
            raise EncryptionError("Stored credentials could not be decrypted") from e

    def encrypt_credentials(self, credentials: Dict[str, Any]) -> str:
        if not credentials:
            return ""
        return self.encrypt(json.dumps(credentials, sort_keys=True))

    def decrypt_credentials(self, token: str) -> Dict[str, Any]:
        plaintext = self.decrypt(token)
        if not plaintext:
            return {}
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise EncryptionError("Stored credentials are not a valid credential record") from e


def encrypt(plaintext: str, secret: Optional[str] = None) -> str:
    if not plaintext:
        return ""
    return CredentialCipher(secret).encrypt(plaintext)


def decrypt(token: str, secret: Optional[str] = None) -> str:
    if not token:
        return ""
    return CredentialCipher(secret).decrypt(token)
