"""Test doubles and builders shared across test modules."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from skillrunner.models.skill import Skill
from skillrunner.services.agent import AgentRequest

TEST_API_KEY = "sk-ant-test-key-0000000000"


def result_message(
    text: str, *, input_tokens: int = 10, output_tokens: int = 5, cost: float = 0.01
) -> dict[str, Any]:
    """A normalised agent ``result`` message."""
    return {
        "type": "result",
        "subtype": "success",
        "is_error": False,
        "result": text,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        "total_cost_usd": cost,
    }


def assistant_message(text: str) -> dict[str, Any]:
    return {"type": "assistant", "content": [{"type": "text", "text": text}], "model": "test"}


class FakeAgentRunner:
    """AgentRunner double that replays scripted messages.

    Records every request it receives. Optionally writes files into the
    working directory, sleeps between messages, or raises after yielding.
    """

    def __init__(
        self,
        messages: list[dict[str, Any]] | None = None,
        *,
        per_call: list[list[dict[str, Any]]] | None = None,
        error: BaseException | None = None,
        delay: float = 0.0,
        files: dict[str, str] | None = None,
    ) -> None:
        self.messages = messages if messages is not None else [result_message("done")]
        self.per_call = per_call
        self.error = error
        self.delay = delay
        self.files = files or {}
        self.requests: list[AgentRequest] = []

    async def stream(self, request: AgentRequest) -> AsyncIterator[dict[str, Any]]:
        call_index = len(self.requests)
        self.requests.append(request)
        for name, content in self.files.items():
            Path(request.working_directory, name).write_text(content)
        messages = self.per_call[call_index] if self.per_call else self.messages
        for message in messages:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield message
        if self.error is not None:
            raise self.error


def make_skill(**overrides: Any) -> Skill:
    data: dict[str, Any] = {
        "id": "skill-weekly",
        "name": "Weekly Digest",
        "description": "Summarise the week's activity",
        "trigger_type": "webhook",
        "steps": [
            {"name": "Gather", "instructions": "Collect this week's updates"},
            {"name": "Write", "instructions": "Write the digest"},
        ],
        "connection_names": ["github"],
        "run_count": 3,
    }
    data.update(overrides)
    return Skill.model_validate(data)
