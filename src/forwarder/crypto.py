"""Cryptographic utilities for key slots at rest.

Uses Fernet (AES-128-CBC with HMAC) for symmetric encryption.
"""

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Fernet tokens always start with this base64 prefix
FERNET_PREFIX = "gAAAAA"


def generate_master_key() -> str:
    """Generate a new master encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for Fernet
    """
    return Fernet.generate_key().decode()


class KeyEncryptor:
    """Encrypts and decrypts key slot contents using Fernet.

    Usage:
        encryptor = KeyEncryptor(master_key)
        token = encryptor.encrypt(private_key_b58)
        private_key_b58 = encryptor.decrypt(token)
    """

    def __init__(self, master_key: str):
        self._fernet = Fernet(master_key.encode())

    def encrypt(self, secret: str) -> str:
        return self._fernet.encrypt(secret.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a token.

        Raises:
            InvalidToken: If decryption fails (wrong key or corrupted data)
        """
        return self._fernet.decrypt(token.encode()).decode()


def is_encrypted(value: str) -> bool:
    """Check whether a stored value is a Fernet token."""
    return value.startswith(FERNET_PREFIX)


__all__ = ["FERNET_PREFIX", "InvalidToken", "KeyEncryptor", "generate_master_key", "is_encrypted"]
