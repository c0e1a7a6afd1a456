"""Configuration routes: store and inspect the Anthropic API key."""

import logging
from typing import Any

from fastapi import APIRouter

from skillrunner.api.deps import Secrets
from skillrunner.core.exceptions import ValidationError
from skillrunner.models.webhook import ConfigUpdateRequest
from skillrunner.services.secrets import ANTHROPIC_API_KEY, mask_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/config", tags=["config"])

API_KEY_PREFIX = "sk-ant-"
API_KEY_MIN_LENGTH = 20


@router.get("")
async def get_config(secrets: Secrets) -> dict[str, Any]:
    """Report whether an API key is stored, masked. Never returns the key."""
    return await secrets.describe_api_key()


@router.post("")
async def update_config(body: ConfigUpdateRequest, secrets: Secrets) -> dict[str, Any]:
    """Validate and store an Anthropic API key, encrypted at rest."""
    api_key = (body.anthropic_api_key or "").strip()
    if not api_key:
        raise ValidationError("anthropic_api_key is required", field="anthropic_api_key")
    if not api_key.startswith(API_KEY_PREFIX):
        raise ValidationError(
            f"Invalid API key format. Anthropic API keys start with '{API_KEY_PREFIX}'",
            field="anthropic_api_key",
        )
    if len(api_key) < API_KEY_MIN_LENGTH:
        raise ValidationError("API key is too short", field="anthropic_api_key")

    await secrets.set(ANTHROPIC_API_KEY, api_key)
    logger.info("Anthropic API key updated")
    return {
        "success": True,
        "message": "API key saved successfully",
        "maskedApiKey": mask_api_key(api_key),
    }
