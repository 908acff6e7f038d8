"""Model/tool-call loop shared by every generation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable

from .ai_service import AIService

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[Any]]


@dataclass
class AgentEvent:
    kind: str
    data: dict[str, Any]


async def _execute_tool(tc: dict[str, Any], tool_executor: ToolExecutor) -> tuple[Any, str]:
    """Execute a single tool call, returning (result, status)."""
    try:
        return await tool_executor(tc["function_name"], tc["arguments"]), "success"
    except Exception as e:
        logger.warning("Tool %s failed: %s", tc["function_name"], e)
        return {"error": str(e)}, "error"


def _add_usage(total: dict[str, int], usage: dict[str, int]) -> None:
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        total[key] = total.get(key, 0) + int(usage.get(key, 0))


async def run_agent_loop(
    ai_service: AIService,
    messages: list[dict[str, Any]],
    tool_executor: ToolExecutor,
    tools_openai: list[dict[str, Any]] | None,
    max_steps: int = 10,
) -> AsyncGenerator[AgentEvent, None]:
    """Run the tool-call loop, yielding events.

    ``messages`` is extended in place with the assistant tool-call turns and
    tool results so each step sees the previous ones. The loop ends with
    exactly one ``done`` or ``error`` event. ``done`` carries the aggregated
    token usage and a ``finish_reason`` (``stop`` or ``max_steps``).
    """
    usage: dict[str, int] = {}
    for step in range(1, max_steps + 1):
        tool_calls_pending: list[dict[str, Any]] = []
        assistant_content = ""
        finish_reason = "stop"

        async for event in ai_service.stream_chat(messages, tools=tools_openai):
            etype = event["event"]
            if etype == "token":
                assistant_content += event["data"]["content"]
                yield AgentEvent(kind="token", data=event["data"])
            elif etype == "tool_call":
                tool_calls_pending.append(event["data"])
                yield AgentEvent(
                    kind="tool_call_start",
                    data={
                        "id": event["data"]["id"],
                        "tool_name": event["data"]["function_name"],
                        "arguments": event["data"]["arguments"],
                    },
                )
            elif etype == "usage":
                _add_usage(usage, event["data"])
            elif etype == "error":
                yield AgentEvent(kind="error", data=event["data"])
                return
            elif etype == "done":
                finish_reason = event["data"].get("finish_reason", "stop")

        if not tool_calls_pending:
            yield AgentEvent(kind="done", data={"finish_reason": finish_reason, "usage": usage, "steps": step})
            return

        messages.append(
            {
                "role": "assistant",
                "content": assistant_content,
                "tool_calls": [
                    {
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["function_name"], "arguments": json.dumps(tc["arguments"])},
                    }
                    for tc in tool_calls_pending
                ],
            }
        )

        for tc in tool_calls_pending:
            result, status = await _execute_tool(tc, tool_executor)
            yield AgentEvent(
                kind="tool_call_end",
                data={"id": tc["id"], "tool_name": tc["function_name"], "output": result, "status": status},
            )
            messages.append({"role": "tool", "tool_call_id": tc["id"], "content": json.dumps(result)})

    logger.warning("Tool loop reached the step bound (%d)", max_steps)
    yield AgentEvent(kind="done", data={"finish_reason": "max_steps", "usage": usage, "steps": max_steps})
