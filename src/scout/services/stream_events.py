"""Typed frames carried on a chat stream.

Each event encodes to one SSE chunk: ``{"event": <name>, "data": <json>}``.
The JSON body always carries a ``type`` discriminator so clients can dispatch
without looking at the SSE event name.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Union

Chunk = dict[str, str]


@dataclass(frozen=True)
class TokenChunk:
    text: str


@dataclass(frozen=True)
class NewChatCreated:
    chat_id: str


@dataclass(frozen=True)
class AppendMessage:
    message: dict[str, Any]


@dataclass(frozen=True)
class ToolCallStarted:
    tool_call_id: str
    tool_name: str
    args: dict[str, Any]


@dataclass(frozen=True)
class ToolCallFinished:
    tool_call_id: str
    tool_name: str
    result: Any
    status: str


@dataclass(frozen=True)
class Finished:
    finish_reason: str
    usage: dict[str, int] = field(default_factory=dict)
    persisted: bool = True


@dataclass(frozen=True)
class StreamError:
    message: str
    code: str = "internal_error"
    retryable: bool = False


StreamEvent = Union[
    TokenChunk, NewChatCreated, AppendMessage, ToolCallStarted, ToolCallFinished, Finished, StreamError
]


def _frame(event: str, payload: dict[str, Any]) -> Chunk:
    return {"event": event, "data": json.dumps(payload)}


def encode_event(event: StreamEvent) -> Chunk:
    if isinstance(event, TokenChunk):
        return _frame("text", {"type": "text", "text": event.text})
    if isinstance(event, NewChatCreated):
        return _frame("data", {"type": "NEW_CHAT_CREATED", "chatId": event.chat_id})
    if isinstance(event, AppendMessage):
        return _frame("data", {"type": "append-message", "message": json.dumps(event.message)})
    if isinstance(event, ToolCallStarted):
        return _frame(
            "tool_call",
            {"type": "tool-call", "toolCallId": event.tool_call_id, "toolName": event.tool_name, "args": event.args},
        )
    if isinstance(event, ToolCallFinished):
        return _frame(
            "tool_result",
            {
                "type": "tool-result",
                "toolCallId": event.tool_call_id,
                "toolName": event.tool_name,
                "result": event.result,
                "status": event.status,
            },
        )
    if isinstance(event, Finished):
        return _frame(
            "finish",
            {
                "type": "finish",
                "finishReason": event.finish_reason,
                "usage": event.usage,
                "persisted": event.persisted,
            },
        )
    if isinstance(event, StreamError):
        return _frame(
            "error",
            {"type": "error", "message": event.message, "code": event.code, "retryable": event.retryable},
        )
    raise TypeError(f"Unknown stream event: {event!r}")


def error_chunk(exc: BaseException) -> Chunk:
    """Terminal frame for a producer that failed or ran out of time."""
    if isinstance(exc, asyncio.TimeoutError):
        return encode_event(StreamError(message="Generation exceeded the maximum duration", code="timeout"))
    return encode_event(StreamError(message="An internal error occurred"))


def is_terminal(chunk: Chunk) -> bool:
    """True for the frames that end a stream: ``finish`` and ``error``."""
    return chunk.get("event") in ("finish", "error")
