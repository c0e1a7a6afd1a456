"""Skill (workflow definition) models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SkillSummary(BaseModel):
    """Catalog entry shown to the classifier. Never carries steps."""

    id: str
    name: str
    description: str | None = None


class Skill(BaseModel):
    """A persisted, reusable multi-step workflow."""

    id: str
    template_id: str | None = None
    name: str
    description: str | None = None
    trigger_type: str = "webhook"
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    steps: list[Any] = Field(default_factory=list)
    connection_names: list[str] = Field(default_factory=list)
    is_system: bool = False
    is_active: bool = True
    run_count: int = 0
    last_run_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
