"""Symmetric encryption for auth tokens kept in storage."""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

__all__ = ["InvalidToken", "TokenCipher"]


class TokenCipher:
    """Fernet cipher keyed by the SHA-256 digest of the configured secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption key must not be empty")
        digest = hashlib.sha256(secret.encode()).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential for storage."""
        return self._fernet.encrypt(plaintext.encode()).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored credential.

        Raises InvalidToken when the value was not produced with this key.
        """
        return self._fernet.decrypt(ciphertext.encode()).decode()
