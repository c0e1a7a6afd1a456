"""Agent execution capability backed by the Claude Agent SDK.

The SDK yields typed message objects; each is normalised into a JSON-safe
dict carrying a ``type`` key (``user``, ``assistant``, ``system``,
``result``, ``stream_event``) so traces can be persisted as-is.
"""

import dataclasses
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from claude_agent_sdk import ClaudeAgentOptions, query

logger = logging.getLogger(__name__)

MESSAGE_TYPES = {
    "UserMessage": "user",
    "AssistantMessage": "assistant",
    "SystemMessage": "system",
    "ResultMessage": "result",
    "StreamEvent": "stream_event",
}

BLOCK_TYPES = {
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}


@dataclass
class AgentRequest:
    """Everything one agent invocation needs."""

    prompt: str
    system_prompt: str
    working_directory: str
    model: str
    api_key: str
    mcp_servers: dict[str, Any] = field(default_factory=dict)
    disallowed_tools: list[str] = field(default_factory=list)


class AgentRunner(Protocol):
    """Given a request, yields normalised agent messages in order."""

    def stream(self, request: AgentRequest) -> AsyncIterator[dict[str, Any]]: ...


def to_jsonable(value: Any) -> Any:
    """Recursively convert SDK objects into JSON-safe values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
        kind = BLOCK_TYPES.get(type(value).__name__)
        if kind and "type" not in data:
            data = {"type": kind, **data}
        return data
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def normalize_message(message: Any) -> dict[str, Any]:
    """Turn one SDK message into a trace entry with a ``type`` key."""
    entry = to_jsonable(message)
    if not isinstance(entry, dict):
        entry = {"content": entry}
    if "type" not in entry:
        entry = {"type": MESSAGE_TYPES.get(type(message).__name__, "unknown"), **entry}
    return entry


def extract_result_text(trace: list[dict[str, Any]]) -> str:
    """Text of the last ``result`` message; empty when there is none."""
    for entry in reversed(trace):
        if entry.get("type") == "result":
            result = entry.get("result")
            return result if isinstance(result, str) else ""
    return ""


def extract_partial_text(trace: list[dict[str, Any]]) -> str:
    """Best-effort text from assistant messages, used when a run is cut short."""
    parts: list[str] = []
    for entry in trace:
        if entry.get("type") != "assistant":
            continue
        for block in entry.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                parts.append(block["text"])
    return "\n".join(parts)


def extract_usage(trace: list[dict[str, Any]]) -> tuple[int | None, float | None]:
    """Token count and cost summed over every ``result`` message.

    Skill runs produce one result per step; one-off runs produce one.

    Returns:
        (token_count, cost_usd); either may be None if never reported.
    """
    tokens: int | None = None
    cost: float | None = None
    for entry in trace:
        if entry.get("type") != "result":
            continue
        usage = entry.get("usage")
        if isinstance(usage, dict):
            for key in (
                "input_tokens",
                "output_tokens",
                "cache_creation_input_tokens",
                "cache_read_input_tokens",
            ):
                value = usage.get(key)
                if isinstance(value, int):
                    tokens = (tokens or 0) + value
        reported = entry.get("total_cost_usd")
        if isinstance(reported, (int, float)):
            cost = (cost or 0.0) + float(reported)
    return tokens, cost


class ClaudeAgentRunner:
    """AgentRunner that drives ``claude_agent_sdk.query``."""

    async def stream(self, request: AgentRequest) -> AsyncIterator[dict[str, Any]]:
        options = ClaudeAgentOptions(
            model=request.model,
            system_prompt=request.system_prompt,
            mcp_servers=request.mcp_servers,
            cwd=request.working_directory,
            permission_mode="bypassPermissions",
            disallowed_tools=request.disallowed_tools,
            env={"ANTHROPIC_API_KEY": request.api_key},
        )
        logger.info(
            "Starting agent query",
            extra={
                "model": request.model,
                "working_directory": request.working_directory,
                "mcp_servers": sorted(request.mcp_servers) or "none",
                "disallowed_tools": request.disallowed_tools or "none",
            },
        )
        count = 0
        async for message in query(prompt=request.prompt, options=options):
            count += 1
            entry = normalize_message(message)
            logger.debug("Agent message %d: %s", count, entry.get("type"))
            yield entry
        logger.info("Agent query finished", extra={"message_count": count})
