"""Pydantic models for the skill runner."""

from skillrunner.models.classification import ClassificationResult, Confidence
from skillrunner.models.execution import (
    Execution,
    ExecutionList,
    ExecutionStatus,
    ExecutionTrigger,
)
from skillrunner.models.skill import Skill, SkillSummary
from skillrunner.models.webhook import (
    AsyncAcknowledgement,
    ConfigStatus,
    ConfigUpdateRequest,
    FileInfo,
    StoredResult,
    WebhookRequest,
    WebhookResponse,
)

__all__ = [
    "AsyncAcknowledgement",
    "ClassificationResult",
    "ConfigStatus",
    "ConfigUpdateRequest",
    "Confidence",
    "Execution",
    "ExecutionList",
    "ExecutionStatus",
    "ExecutionTrigger",
    "FileInfo",
    "Skill",
    "SkillSummary",
    "StoredResult",
    "WebhookRequest",
    "WebhookResponse",
]
