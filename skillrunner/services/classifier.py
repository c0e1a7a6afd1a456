"""Workflow classification: match a free-text prompt to an active skill.

Classification never fails the request. Every error path degrades to
"no match" so the pipeline can fall back to a one-off agent run.
"""

import json
import logging
from typing import Any, Protocol

import anthropic

from skillrunner.core.config import Settings
from skillrunner.core.exceptions import ClassificationError
from skillrunner.db.skills import SkillRepository
from skillrunner.models.classification import ClassificationResult, Confidence
from skillrunner.models.skill import SkillSummary
from skillrunner.services.secrets import SecretStore

logger = logging.getLogger(__name__)


class ClassifierLLM(Protocol):
    """Prompt in, free-form text (expected to hold one JSON object) out."""

    async def complete(self, prompt: str) -> str: ...


class AnthropicClassifierClient:
    """Classifier capability backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings, secrets: SecretStore) -> None:
        self._settings = settings
        self._secrets = secrets

    async def complete(self, prompt: str) -> str:
        """Send one user message and return the text of the reply.

        Raises:
            ClassificationError: If no API key is configured or the reply has no text.
        """
        api_key = await self._secrets.resolve_anthropic_api_key()
        if not api_key:
            raise ClassificationError(
                "No Anthropic API key configured. Set it via /api/config or ANTHROPIC_API_KEY."
            )

        client = anthropic.AsyncAnthropic(api_key=api_key)
        try:
            response = await client.messages.create(
                model=self._settings.CLASSIFIER_MODEL,
                max_tokens=self._settings.CLASSIFIER_MAX_TOKENS,
                messages=[{"role": "user", "content": prompt}],
            )
        finally:
            await client.close()

        for block in response.content:
            if getattr(block, "type", None) == "text":
                return str(getattr(block, "text", ""))
        raise ClassificationError("Unexpected response type from Claude")


def build_classification_prompt(user_prompt: str, catalog: list[SkillSummary]) -> str:
    workflow_list = "\n".join(f"- {s.name}: {s.description or ''}" for s in catalog)
    return f"""You are a workflow classifier.

Given the user's request, determine if it matches one of the available pre-built workflows.

AVAILABLE WORKFLOWS:
{workflow_list}

USER REQUEST:
"{user_prompt}"

INSTRUCTIONS:
1. Analyze the user's request
2. Determine if it clearly matches one of the available workflows
3. Respond with JSON ONLY in this exact format:

{{
  "match": true/false,
  "workflowName": "exact_workflow_name" or null,
  "confidence": "high/medium/low/none",
  "reasoning": "brief explanation"
}}

RULES:
- Only match if you're confident the workflow fits the request
- Use exact workflow names from the list above
- If uncertain or request is custom/ad-hoc, return match: false
- Confidence "high" = clearly matches, "medium" = likely matches, "low" = might match, "none" = no match"""


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in text.

    Tolerates surrounding prose and markdown code fences.

    Args:
        text: Raw model output.

    Returns:
        The first parseable JSON object, or None.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(obj, dict):
                return obj
        start = text.find("{", start + 1)
    return None


class WorkflowClassifier:
    """Chooses at most one active skill for a prompt."""

    def __init__(self, skills: SkillRepository, llm: ClassifierLLM) -> None:
        self._skills = skills
        self._llm = llm

    async def classify(self, prompt: str) -> ClassificationResult:
        """Classify a prompt against the active skill catalog.

        Args:
            prompt: The user's free-text request.

        Returns:
            ClassificationResult with the full matched skill, or a "none" result.
        """
        try:
            return await self._classify(prompt)
        except Exception as e:
            logger.warning(
                "Classification failed - falling back to one-off agent: %s",
                e,
                extra={"error_type": type(e).__name__},
            )
            return ClassificationResult.none()

    async def _classify(self, prompt: str) -> ClassificationResult:
        catalog = await self._skills.list_active()
        if not catalog:
            logger.info("No active skills in catalog")
            return ClassificationResult.none()

        raw = await self._llm.complete(build_classification_prompt(prompt, catalog))
        parsed = extract_json_object(raw)
        if parsed is None:
            logger.warning("Classifier response contained no JSON object")
            return ClassificationResult.none("Classifier response was not valid JSON")

        reasoning = parsed.get("reasoning")
        if not isinstance(reasoning, str):
            reasoning = None
        workflow_name = parsed.get("workflowName")

        if parsed.get("match") is not True or not isinstance(workflow_name, str) or not workflow_name:
            logger.info("No workflow match found")
            return ClassificationResult(
                confidence=Confidence.coerce(parsed.get("confidence"), Confidence.NONE),
                reasoning=reasoning,
            )

        wanted = workflow_name.strip().lower()
        summary = next((s for s in catalog if s.name.lower() == wanted), None)
        if summary is None:
            logger.warning("Suggested workflow %r not found in catalog", workflow_name)
            return ClassificationResult.none("Suggested workflow not found in database")

        try:
            skill = await self._skills.get_skill(summary.id)
        except Exception as e:
            logger.warning("Failed to fetch skill %s: %s", summary.id, e)
            skill = None
        if skill is None:
            return ClassificationResult.none(f"Failed to load workflow {summary.name}")

        confidence = Confidence.coerce(parsed.get("confidence"), Confidence.MEDIUM)
        logger.info(
            "Matched workflow: %s",
            skill.name,
            extra={"skill_id": skill.id, "confidence": confidence.value},
        )
        return ClassificationResult(skill=skill, confidence=confidence, reasoning=reasoning)
