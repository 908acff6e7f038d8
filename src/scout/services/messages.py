"""Chat message format helpers.

Messages travel between the client, the store and the orchestrator as plain
dicts shaped like ``{"id", "role", "content", "parts"}``. ``parts`` is the
authoritative payload; ``content`` is a plain-text convenience that may be
empty. Part types:

- ``{"type": "text", "text": ...}``
- ``{"type": "tool-invocation", "toolInvocation": {"state", "toolCallId", "toolName", "args", "result"}}``
- ``{"type": "tool-result", "toolCallId", "toolName", "result"}`` (only on ``tool`` role messages)
"""

from __future__ import annotations

import json
from typing import Any

VALID_ROLES = ("user", "assistant", "system", "tool")

TITLE_MAX_CHARS = 50


def normalize_parts(message: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the message's parts, synthesizing a text part from ``content`` when absent."""
    parts = message.get("parts")
    if parts:
        return list(parts)
    content = message.get("content")
    if isinstance(content, str) and content:
        return [{"type": "text", "text": content}]
    return []


def message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str) and content:
        return content
    return "".join(p.get("text", "") for p in normalize_parts(message) if p.get("type") == "text")


def derive_title(messages: list[dict[str, Any]]) -> str:
    """Title from the last user message: first 50 characters followed by an ellipsis."""
    for message in reversed(messages):
        if message.get("role") == "user":
            text = message_text(message).strip()
            if text:
                return text[:TITLE_MAX_CHARS] + "..."
    return "New Chat"


def to_openai_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert stored/client messages to the OpenAI chat-completions format."""
    result: list[dict[str, Any]] = []
    for message in messages:
        role = message.get("role")
        parts = normalize_parts(message)

        if role == "tool":
            for part in parts:
                if part.get("type") == "tool-result":
                    result.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.get("toolCallId", ""),
                            "content": json.dumps(part.get("result")),
                        }
                    )
            continue

        if role != "assistant":
            result.append({"role": role, "content": message_text(message)})
            continue

        # An assistant message may interleave text with tool invocations across
        # several model steps; each invocation closes the current step.
        text = ""
        calls: list[dict[str, Any]] = []
        for part in parts:
            ptype = part.get("type")
            if ptype == "text":
                if calls:
                    _flush_assistant_step(result, text, calls)
                    text, calls = "", []
                text += part.get("text", "")
            elif ptype == "tool-invocation":
                calls.append(part.get("toolInvocation", {}))
        if calls or text:
            _flush_assistant_step(result, text, calls)
    return result


def _flush_assistant_step(result: list[dict[str, Any]], text: str, calls: list[dict[str, Any]]) -> None:
    completed = [c for c in calls if c.get("state") == "result"]
    if not completed:
        result.append({"role": "assistant", "content": text})
        return
    result.append(
        {
            "role": "assistant",
            "content": text,
            "tool_calls": [
                {
                    "id": c.get("toolCallId", ""),
                    "type": "function",
                    "function": {"name": c.get("toolName", ""), "arguments": json.dumps(c.get("args", {}))},
                }
                for c in completed
            ],
        }
    )
    for c in completed:
        result.append(
            {
                "role": "tool",
                "tool_call_id": c.get("toolCallId", ""),
                "content": json.dumps(c.get("result")),
            }
        )
