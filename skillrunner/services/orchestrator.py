"""Execution orchestrator: one-off agent runs and sequential skill runs.

Both paths share one working directory per request and one deadline
(AGENT_TIMEOUT_MS) over the whole call. The agent call is never retried.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from skillrunner.core.config import Settings
from skillrunner.core.exceptions import AgentError, AgentTimeoutError
from skillrunner.core.resilience import with_timeout
from skillrunner.models.skill import Skill
from skillrunner.services.agent import (
    AgentRequest,
    AgentRunner,
    extract_partial_text,
    extract_result_text,
    extract_usage,
)
from skillrunner.services.prompts import apply_user_prefix
from skillrunner.services.secrets import SecretStore

logger = logging.getLogger(__name__)

MAX_PREVIOUS_OUTPUT_CHARS = 8000


@dataclass
class OrchestrationResult:
    """Outcome of a successful run."""

    text: str
    working_directory: str
    trace: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    token_count: int | None = None
    cost_usd: float | None = None


def _step_instructions(step: Any) -> tuple[str | None, str]:
    if isinstance(step, str):
        return None, step
    if isinstance(step, dict):
        name = step.get("name") or step.get("title")
        for key in ("instructions", "prompt", "description", "action"):
            value = step.get(key)
            if isinstance(value, str) and value.strip():
                return name, value
        return name, json.dumps(step, default=str)
    return None, str(step)


def render_step_prompt(
    skill: Skill,
    index: int,
    step: Any,
    original_prompt: str,
    previous_output: str | None,
) -> str:
    """Build the agent prompt for one workflow step.

    Args:
        skill: The workflow being run.
        index: Zero-based step position.
        step: Opaque step payload from the skill definition.
        original_prompt: The user's request.
        previous_output: Final text of the previous step, if any.

    Returns:
        Prompt text for this step's agent invocation.
    """
    name, instructions = _step_instructions(step)
    title = f"Step {index + 1} of {len(skill.steps)}"
    if name:
        title = f"{title}: {name}"

    sections = [
        f'You are executing the workflow "{skill.name}".',
        f"## {title}\n{instructions}",
        f"## Original request\n{original_prompt}",
    ]
    if previous_output:
        sections.append(f"## Output of the previous step\n{previous_output[:MAX_PREVIOUS_OUTPUT_CHARS]}")
    return "\n\n".join(sections)


def filter_connections(connections: dict[str, Any], allowed: list[str]) -> dict[str, Any]:
    """Keep only the tool connections a skill is permitted to use.

    A skill that names no connections gets none.
    """
    permitted = set(allowed)
    return {name: cfg for name, cfg in connections.items() if name in permitted}


class ExecutionOrchestrator:
    """Drives an agent run for a request, bounded by the agent deadline."""

    def __init__(self, settings: Settings, runner: AgentRunner, secrets: SecretStore) -> None:
        self._settings = settings
        self._runner = runner
        self._secrets = secrets

    def allocate_working_directory(self, request_id: str) -> str:
        root = Path(self._settings.WORKING_DIRECTORY_ROOT)
        return str(root / f"{request_id}-{int(time.time() * 1000)}")

    async def run(
        self,
        skill: Skill | None,
        prompt: str,
        request_id: str,
        connections: dict[str, Any],
        system_prompt: str,
        user_prompt_prefix: str | None = None,
    ) -> OrchestrationResult:
        """Run the agent for one request.

        Args:
            skill: Matched workflow, or None for a one-off run.
            prompt: The user's request.
            request_id: Client request id (scopes the working directory).
            connections: Tool connections available to this request.
            system_prompt: Resolved system prompt.
            user_prompt_prefix: Optional text prepended to one-off prompts.

        Returns:
            OrchestrationResult with text, working directory, trace and usage.

        Raises:
            AgentTimeoutError: The run exceeded AGENT_TIMEOUT_MS.
            AgentError: Any other failure, carrying the working directory and partial trace.
        """
        start = time.perf_counter()
        working_directory = self.allocate_working_directory(request_id)
        trace: list[dict[str, Any]] = []

        async def execute() -> str:
            api_key = await self._secrets.resolve_anthropic_api_key()
            if not api_key:
                raise AgentError(
                    "Anthropic API key not configured. Please set up your API key in the configuration."
                )
            await asyncio.to_thread(Path(working_directory).mkdir, parents=True, exist_ok=True)
            logger.info(
                "Created working directory",
                extra={"request_id": request_id, "working_directory": working_directory},
            )
            if skill is None:
                return await self._run_one_off(
                    prompt, working_directory, connections, system_prompt, user_prompt_prefix, api_key, trace
                )
            return await self._run_skill(
                skill, prompt, working_directory, connections, system_prompt, api_key, trace
            )

        try:
            text = await with_timeout(
                execute(),
                self._settings.AGENT_TIMEOUT_MS,
                on_timeout=lambda ms: AgentTimeoutError(
                    ms, working_directory=working_directory, trace=list(trace)
                ),
            )
        except AgentTimeoutError as e:
            e.partial_text = extract_partial_text(e.trace)
            logger.error(
                "Agent execution timeout",
                extra={
                    "request_id": request_id,
                    "timeout_ms": self._settings.AGENT_TIMEOUT_MS,
                    "messages_before_timeout": len(e.trace),
                    "partial_text_chars": len(e.partial_text),
                },
            )
            raise
        except AgentError as e:
            e.working_directory = e.working_directory or working_directory
            e.trace = e.trace or list(trace)
            raise
        except Exception as e:
            logger.exception("Agent execution failed", extra={"request_id": request_id})
            raise AgentError(
                "Agent execution failed",
                cause=e,
                working_directory=working_directory,
                trace=list(trace),
            ) from e

        token_count, cost_usd = extract_usage(trace)
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "Agent execution completed",
            extra={
                "request_id": request_id,
                "duration_ms": duration_ms,
                "message_count": len(trace),
                "skill_id": skill.id if skill else None,
            },
        )
        return OrchestrationResult(
            text=text,
            working_directory=working_directory,
            trace=trace,
            duration_ms=duration_ms,
            token_count=token_count,
            cost_usd=cost_usd,
        )

    async def _run_one_off(
        self,
        prompt: str,
        working_directory: str,
        connections: dict[str, Any],
        system_prompt: str,
        user_prompt_prefix: str | None,
        api_key: str,
        trace: list[dict[str, Any]],
    ) -> str:
        request = AgentRequest(
            prompt=apply_user_prefix(prompt, user_prompt_prefix),
            system_prompt=system_prompt,
            working_directory=working_directory,
            model=self._settings.AGENT_MODEL,
            api_key=api_key,
            mcp_servers=connections,
            disallowed_tools=self._settings.disallowed_tools_list,
        )
        async for entry in self._runner.stream(request):
            trace.append(entry)
        return extract_result_text(trace)

    async def _run_skill(
        self,
        skill: Skill,
        prompt: str,
        working_directory: str,
        connections: dict[str, Any],
        system_prompt: str,
        api_key: str,
        trace: list[dict[str, Any]],
    ) -> str:
        allowed = filter_connections(connections, skill.connection_names)
        missing = sorted(set(skill.connection_names) - set(allowed))
        if missing:
            logger.warning(
                "Skill references unavailable connections",
                extra={"skill_id": skill.id, "missing_connections": missing},
            )
        if not skill.steps:
            logger.warning("Skill has no steps - running the request as a single step", extra={"skill_id": skill.id})

        steps = skill.steps or [prompt]
        previous: str | None = None
        for index, step in enumerate(steps):
            step_trace: list[dict[str, Any]] = []
            request = AgentRequest(
                prompt=render_step_prompt(skill, index, step, prompt, previous),
                system_prompt=system_prompt,
                working_directory=working_directory,
                model=self._settings.WORKFLOW_AGENT_MODEL,
                api_key=api_key,
                mcp_servers=allowed,
                disallowed_tools=self._settings.disallowed_tools_list,
            )
            logger.info(
                "Executing workflow step %d/%d",
                index + 1,
                len(steps),
                extra={"skill_id": skill.id},
            )
            async for entry in self._runner.stream(request):
                tagged = {**entry, "step": index}
                step_trace.append(tagged)
                trace.append(tagged)
            previous = extract_result_text(step_trace)
        return previous or ""
