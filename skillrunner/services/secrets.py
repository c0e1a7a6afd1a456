"""Encrypted key/value secrets stored in the ``config`` table."""

import logging
from datetime import UTC, datetime
from typing import Any

from skillrunner.core.config import Settings
from skillrunner.core.crypto import SecretCipher, is_encrypted
from skillrunner.db.client import StorageClient

logger = logging.getLogger(__name__)

ANTHROPIC_API_KEY = "anthropic_api_key"


def mask_api_key(api_key: str | None) -> str | None:
    """Show only the first 7 and last 4 characters of a key."""
    if not api_key or len(api_key) < 15:
        return None
    return f"{api_key[:7]}...{api_key[-4:]}"


class SecretStore:
    """get/set small secrets with encryption at rest.

    A secret that cannot be read (storage failure, bad tag, malformed
    record) is reported as absent, never as an error.
    """

    def __init__(self, settings: Settings, storage: StorageClient) -> None:
        self._settings = settings
        self._storage = storage
        self._cipher: SecretCipher | None = None

    @property
    def cipher(self) -> SecretCipher:
        if self._cipher is None:
            self._cipher = SecretCipher(self._settings.VM_ENCRYPTION_SECRET.get_secret_value())
        return self._cipher

    async def _fetch(self, key: str) -> dict[str, Any] | None:
        rows = await self._storage.run(
            "get_config",
            lambda c: c.table("config").select("key, value, updated_at").eq("key", key).limit(1),
        )
        return rows[0] if rows else None

    async def get(self, key: str) -> str | None:
        """Return the decrypted secret, or None if absent or unreadable."""
        try:
            row = await self._fetch(key)
            if row is None or not row.get("value"):
                return None
            value = row["value"]
            # Legacy plaintext rows need no key
            if not is_encrypted(value):
                return value
            return self.cipher.decrypt(value)
        except Exception as e:
            logger.error("Secret unavailable: %s", type(e).__name__, extra={"key": key})
            return None

    async def set(self, key: str, value: str) -> bool:
        """Encrypt and upsert a secret.

        Raises:
            ConfigurationError: If VM_ENCRYPTION_SECRET is not set.
            DatabaseError: On storage failure.
        """
        row = {
            "key": key,
            "value": self.cipher.encrypt(value),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        await self._storage.run(
            "set_config",
            lambda c: c.table("config").upsert(row, on_conflict="key"),
        )
        logger.info("Secret updated", extra={"key": key})
        return True

    async def describe_api_key(self) -> dict[str, Any]:
        """Status of the stored Anthropic key, safe to return to clients."""
        try:
            row = await self._fetch(ANTHROPIC_API_KEY)
        except Exception as e:
            logger.error("Failed to read config: %s", type(e).__name__)
            row = None
        api_key = await self.get(ANTHROPIC_API_KEY) if row else None
        return {
            "hasApiKey": bool(api_key),
            "maskedApiKey": mask_api_key(api_key),
            "apiKeyUpdatedAt": row.get("updated_at") if row else None,
        }

    async def resolve_anthropic_api_key(self) -> str | None:
        """Stored key first, then ANTHROPIC_API_KEY from settings."""
        stored = await self.get(ANTHROPIC_API_KEY)
        if stored:
            return stored
        return self._settings.ANTHROPIC_API_KEY.get_secret_value() or None
