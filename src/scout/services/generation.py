"""Generation orchestrator: drives one chat turn from request to persisted history.

States: start -> (new-chat notice) -> generating (tool loop) -> finished
(merged history written back) -> trace flushed. Every state transition that
a client can observe is a frame on the stream.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from typing import Any, AsyncGenerator

from ..db import ThreadSafeConnection
from . import storage
from .agent_loop import run_agent_loop
from .ai_service import AIService
from .messages import derive_title, to_openai_messages
from .stream_events import (
    Chunk,
    Finished,
    NewChatCreated,
    StreamError,
    TokenChunk,
    ToolCallFinished,
    ToolCallStarted,
    encode_event,
)
from .tracing import Tracer
from .web_search import SEARCH_TOOL, SearchService

logger = logging.getLogger(__name__)


class _ResponseMessageBuilder:
    """Collects one generation's output into a single assistant message, in emission order."""

    def __init__(self) -> None:
        self.parts: list[dict[str, Any]] = []
        self._invocations: dict[str, dict[str, Any]] = {}

    def add_text(self, text: str) -> None:
        if self.parts and self.parts[-1]["type"] == "text":
            self.parts[-1]["text"] += text
        else:
            self.parts.append({"type": "text", "text": text})

    def start_tool(self, tool_call_id: str, tool_name: str, args: dict[str, Any]) -> None:
        invocation = {"state": "call", "toolCallId": tool_call_id, "toolName": tool_name, "args": args}
        self._invocations[tool_call_id] = invocation
        self.parts.append({"type": "tool-invocation", "toolInvocation": invocation})

    def finish_tool(self, tool_call_id: str, result: Any) -> None:
        invocation = self._invocations.get(tool_call_id)
        if invocation is not None:
            invocation["state"] = "result"
            invocation["result"] = result

    def build(self) -> dict[str, Any] | None:
        if not self.parts:
            return None
        text = "".join(p["text"] for p in self.parts if p["type"] == "text")
        return {"id": str(uuid.uuid4()), "role": "assistant", "content": text, "parts": self.parts}


class GenerationOrchestrator:
    def __init__(
        self,
        ai_service: AIService,
        search: SearchService,
        db: ThreadSafeConnection,
        tracer: Tracer,
        max_steps: int = 10,
        persist_attempts: int = 3,
        persist_retry_delay: float = 0.5,
    ) -> None:
        self.ai_service = ai_service
        self.search = search
        self.db = db
        self.tracer = tracer
        self.max_steps = max_steps
        self.persist_attempts = persist_attempts
        self.persist_retry_delay = persist_retry_delay

    async def run(
        self,
        user_id: str,
        chat_id: str,
        messages: list[dict[str, Any]],
        is_new_chat: bool,
    ) -> AsyncGenerator[Chunk, None]:
        if is_new_chat:
            yield encode_event(NewChatCreated(chat_id=chat_id))

        trace = self.tracer.trace(
            "chat",
            user_id=user_id,
            session_id=chat_id,
            metadata={"isNewChat": is_new_chat, "messageCount": len(messages)},
        )

        builder = _ResponseMessageBuilder()
        outcome: dict[str, Any] = {}
        try:
            async for event in run_agent_loop(
                ai_service=self.ai_service,
                messages=to_openai_messages(messages),
                tool_executor=self.search.execute_tool,
                tools_openai=[SEARCH_TOOL],
                max_steps=self.max_steps,
            ):
                kind = event.kind
                data = event.data

                if kind == "token":
                    builder.add_text(data["content"])
                    yield encode_event(TokenChunk(text=data["content"]))

                elif kind == "tool_call_start":
                    builder.start_tool(data["id"], data["tool_name"], data["arguments"])
                    yield encode_event(
                        ToolCallStarted(tool_call_id=data["id"], tool_name=data["tool_name"], args=data["arguments"])
                    )

                elif kind == "tool_call_end":
                    builder.finish_tool(data["id"], data["output"])
                    yield encode_event(
                        ToolCallFinished(
                            tool_call_id=data["id"],
                            tool_name=data["tool_name"],
                            result=data["output"],
                            status=data["status"],
                        )
                    )

                elif kind == "error":
                    trace.update(output={"error": data.get("message", "")})
                    self.tracer.flush_in_background()
                    yield encode_event(
                        StreamError(
                            message=data.get("message", "Generation failed"),
                            code=data.get("code", "upstream_error"),
                            retryable=bool(data.get("retryable", False)),
                        )
                    )
                    return

                elif kind == "done":
                    outcome = data
        except Exception:
            logger.exception("Generation failed for chat %s", chat_id)
            trace.update(output={"error": "upstream failure"})
            self.tracer.flush_in_background()
            yield encode_event(
                StreamError(message="Upstream failure during generation", code="upstream_error", retryable=True)
            )
            return

        response_message = builder.build()
        merged = list(messages)
        if response_message is not None:
            merged.append(response_message)
        persisted = await self._persist(user_id, chat_id, derive_title(messages), merged)

        usage = outcome.get("usage", {})
        trace.generation(
            name="chat-completion",
            model=self.ai_service.config.model,
            input=messages,
            output=response_message,
            usage={
                "input": usage.get("prompt_tokens"),
                "output": usage.get("completion_tokens"),
                "total": usage.get("total_tokens"),
            },
            metadata={"maxSteps": self.max_steps, "steps": outcome.get("steps"), "persisted": persisted},
        )
        # The terminal frame closes the channel, so nothing may follow it
        self.tracer.flush_in_background()

        yield encode_event(
            Finished(finish_reason=outcome.get("finish_reason", "stop"), usage=usage, persisted=persisted)
        )

    async def _persist(self, user_id: str, chat_id: str, title: str, messages: list[dict[str, Any]]) -> bool:
        """Replace-write the merged history. Failures are logged and reported, never raised."""
        for attempt in range(1, self.persist_attempts + 1):
            try:
                storage.upsert_chat(self.db, user_id, chat_id, title, messages)
                return True
            except (storage.OwnershipConflictError, ValueError):
                logger.exception("Chat %s cannot be persisted", chat_id)
                return False
            except sqlite3.Error:
                logger.exception(
                    "Persisting chat %s failed (attempt %d/%d)", chat_id, attempt, self.persist_attempts
                )
                if attempt < self.persist_attempts:
                    await asyncio.sleep(self.persist_retry_delay * attempt)
        return False
