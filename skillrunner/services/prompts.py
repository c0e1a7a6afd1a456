"""System prompt and user prompt prefix loading."""

import asyncio
import logging
from pathlib import Path

from skillrunner.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that completes tasks using the tools available to you. "
    "Work inside the current working directory. Save any files you produce there so they "
    "can be returned to the user, and finish with a concise summary of what you did."
)


class PromptLoader:
    """Reads optional prompt files named in settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def _read(self, path: str) -> str | None:
        if not path:
            return None
        try:
            text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not read prompt file %s: %s", path, e)
            return None
        return text.strip() or None

    async def system_prompt(self, override: str | None = None) -> str:
        """Request override, then SYSTEM_PROMPT_FILE, then the built-in default."""
        if override and override.strip():
            return override
        return await self._read(self._settings.SYSTEM_PROMPT_FILE) or DEFAULT_SYSTEM_PROMPT

    async def user_prompt_prefix(self) -> str | None:
        return await self._read(self._settings.USER_PROMPT_PREFIX_FILE)


def apply_user_prefix(prompt: str, prefix: str | None) -> str:
    return f"{prefix}\n\n{prompt}" if prefix else prompt
