"""Authenticated encryption for secrets stored at rest.

Values are sealed with AES-256-GCM under a key derived (SHA-256) from the
process-wide VM_ENCRYPTION_SECRET. The stored form is::

    encrypted:<iv b64>:<auth tag b64>:<ciphertext b64>

Anything without the ``encrypted:`` marker is returned unchanged so values
written before encryption was introduced stay readable.
"""

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from skillrunner.core.exceptions import ConfigurationError

ENCRYPTED_PREFIX = "encrypted:"
IV_LENGTH = 16
TAG_LENGTH = 16


class DecryptionError(Exception):
    """Stored value is malformed or failed authentication."""


class SecretCipher:
    """Encrypts and decrypts individual secret values."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ConfigurationError("VM_ENCRYPTION_SECRET is not set")
        self._aesgcm = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ENCRYPTED_PREFIX + ":".join(
            base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
        )

    def decrypt(self, stored: str) -> str:
        """Open a stored value.

        Args:
            stored: Value as read from the config table.

        Returns:
            The plaintext; unmarked values are returned as-is.

        Raises:
            DecryptionError: The record is malformed or its tag does not verify.
        """
        if not is_encrypted(stored):
            return stored

        parts = stored[len(ENCRYPTED_PREFIX):].split(":")
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted format")
        try:
            iv, tag, ciphertext = (base64.b64decode(part, validate=True) for part in parts)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Invalid base64 in encrypted value") from e
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Invalid IV or auth tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch") from e
        return plaintext.decode("utf-8")


def is_encrypted(value: str) -> bool:
    return value.startswith(ENCRYPTED_PREFIX)
