"""Workflow classification models (ephemeral, never persisted)."""

from enum import Enum

from pydantic import BaseModel

from skillrunner.models.skill import Skill


class Confidence(str, Enum):
    """Classifier confidence tier."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @classmethod
    def coerce(cls, value: object, default: "Confidence") -> "Confidence":
        """Read a tier from loosely formatted model output."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return default


class ClassificationResult(BaseModel):
    """Outcome of classify(): a matched skill or none."""

    skill: Skill | None = None
    confidence: Confidence = Confidence.NONE
    reasoning: str | None = None

    @property
    def matched(self) -> bool:
        return self.skill is not None

    @property
    def skill_id(self) -> str | None:
        return self.skill.id if self.skill else None

    @classmethod
    def none(cls, reasoning: str | None = None) -> "ClassificationResult":
        return cls(skill=None, confidence=Confidence.NONE, reasoning=reasoning)
