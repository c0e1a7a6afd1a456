"""Execution record models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    """Lifecycle status. Transitions only running -> completed | failed."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class ExecutionTrigger(str, Enum):
    """What started the run."""

    WEBHOOK = "webhook"
    MANUAL = "manual"
    SCHEDULE = "schedule"
    CHAT = "chat"


class Execution(BaseModel):
    """One persisted run attempt against a skill."""

    id: str
    skill_id: str | None = None
    status: ExecutionStatus
    trigger: ExecutionTrigger = ExecutionTrigger.WEBHOOK
    input: dict[str, Any] | None = None
    output: str | None = None
    trace: list[Any] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    token_count: int | None = None
    cost_usd: float | None = None
    reported_to_core: bool = False


class ExecutionList(BaseModel):
    """Response body for execution listing."""

    executions: list[Execution] = Field(default_factory=list)
    count: int = 0
