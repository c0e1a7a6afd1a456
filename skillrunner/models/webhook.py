"""Request/response models for the webhook and config endpoints."""

import re
import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from skillrunner.models.skill import Skill

REQUEST_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
DEFAULT_REQUEST_ID_MAX_LENGTH = 100


def default_request_id() -> str:
    return f"req-{int(time.time() * 1000)}"


class WebhookRequest(BaseModel):
    """Incoming prompt payload.

    Pass ``context={"request_id_max_length": n}`` to ``model_validate`` to
    override the request id length limit.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1)
    request_id: str = Field(default_factory=default_request_id, alias="requestId")
    system_prompt: str | None = Field(None, alias="systemPrompt")
    run_async: bool = Field(False, alias="async")
    search_workflow: bool = Field(False, alias="searchWorkflow")
    metadata: dict[str, Any] | None = None

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt cannot be empty")
        return v

    @field_validator("request_id")
    @classmethod
    def request_id_format(cls, v: str, info: ValidationInfo) -> str:
        max_length = DEFAULT_REQUEST_ID_MAX_LENGTH
        if info.context and "request_id_max_length" in info.context:
            max_length = int(info.context["request_id_max_length"])
        if not v:
            raise ValueError("requestId cannot be empty")
        if len(v) > max_length:
            raise ValueError(f"requestId too long (max {max_length} characters)")
        if not REQUEST_ID_PATTERN.match(v):
            raise ValueError(
                "requestId can only contain letters, numbers, hyphens, and underscores"
            )
        return v


class FileInfo(BaseModel):
    """An uploaded file artifact."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    url: str
    size: int | None = None
    mime_type: str | None = Field(None, alias="mimeType")


class WebhookResponse(BaseModel):
    """Synchronous result. Render with ``by_alias=True, exclude_none=True``."""

    model_config = ConfigDict(populate_by_name=True)

    response: str
    files: list[FileInfo] = Field(default_factory=list)
    request_id: str = Field(..., alias="requestId")
    trace: list[dict[str, Any]] = Field(default_factory=list)
    workflow_id: str | None = Field(None, alias="workflowId")
    workflow: Skill | None = None


class AsyncAcknowledgement(BaseModel):
    """Immediate reply for async mode."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["processing"] = "processing"
    request_id: str = Field(..., alias="requestId")


class StoredResult(BaseModel):
    """A persisted per-request result."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., alias="requestId")
    text: str
    files: list[FileInfo] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None
    created_at: str | None = Field(None, alias="createdAt")


class ConfigUpdateRequest(BaseModel):
    """Body of POST /api/config."""

    anthropic_api_key: str | None = None


class ConfigStatus(BaseModel):
    """Body of GET /api/config. Never carries the key itself."""

    model_config = ConfigDict(populate_by_name=True)

    has_api_key: bool = Field(..., alias="hasApiKey")
    masked_api_key: str | None = Field(None, alias="maskedApiKey")
    api_key_updated_at: str | None = Field(None, alias="apiKeyUpdatedAt")
