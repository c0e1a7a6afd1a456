"""Skill catalog reads."""

import logging
from typing import Any

from skillrunner.db.client import StorageClient
from skillrunner.models.skill import Skill, SkillSummary

logger = logging.getLogger(__name__)


class SkillRepository:
    """Read access to the ``skills`` table. The pipeline never writes here
    except through ExecutionStore.start_execution."""

    def __init__(self, storage: StorageClient) -> None:
        self._storage = storage

    async def list_active(self) -> list[SkillSummary]:
        """Active skills, catalog columns only (no step payload)."""
        rows: list[dict[str, Any]] = await self._storage.run(
            "list_active_skills",
            lambda c: c.table("skills")
            .select("id, name, description")
            .eq("is_active", True)
            .order("name"),
        )
        return [SkillSummary.model_validate(row) for row in rows or []]

    async def get_skill(self, skill_id: str) -> Skill | None:
        """Fetch a full skill, including its steps.

        Args:
            skill_id: Skill UUID.

        Returns:
            The skill, or None if no row matches.
        """
        rows = await self._storage.run(
            "get_skill",
            lambda c: c.table("skills").select("*").eq("id", skill_id).limit(1),
        )
        if not rows:
            return None
        return Skill.model_validate(rows[0])
