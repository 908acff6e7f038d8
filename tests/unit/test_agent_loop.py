"""Tests for the model/tool-call loop."""

from __future__ import annotations

import json
from typing import Any

import pytest

from scout.services.agent_loop import run_agent_loop


class FakeAIService:
    """Replays one scripted list of stream_chat events per model step."""

    def __init__(self, steps: list[list[dict[str, Any]]]) -> None:
        self.steps = steps
        self.calls: list[list[dict[str, Any]]] = []

    async def stream_chat(self, messages, tools=None):
        self.calls.append([dict(m) for m in messages])
        step = self.steps[min(len(self.calls) - 1, len(self.steps) - 1)]
        for event in step:
            yield event


def _token(text: str) -> dict:
    return {"event": "token", "data": {"content": text}}


def _tool_call(call_id: str, query: str) -> dict:
    return {"event": "tool_call", "data": {"id": call_id, "function_name": "search_web", "arguments": {"query": query}}}


def _usage(p: int, c: int) -> dict:
    return {"event": "usage", "data": {"prompt_tokens": p, "completion_tokens": c, "total_tokens": p + c}}


async def _run(ai, executor, max_steps: int = 10, messages=None):
    messages = messages if messages is not None else [{"role": "user", "content": "hi"}]
    return [
        e
        async for e in run_agent_loop(
            ai_service=ai,
            messages=messages,
            tool_executor=executor,
            tools_openai=[],
            max_steps=max_steps,
        )
    ]


async def _echo_executor(name: str, args: dict) -> dict:
    return {"results": [{"title": args["query"], "link": "https://example.com", "snippet": ""}]}


@pytest.mark.asyncio
async def test_text_only_response():
    ai = FakeAIService([[_token("Hel"), _token("lo"), _usage(5, 2), {"event": "done", "data": {"finish_reason": "stop"}}]])
    events = await _run(ai, _echo_executor)
    assert [e.kind for e in events] == ["token", "token", "done"]
    assert events[-1].data["finish_reason"] == "stop"
    assert events[-1].data["usage"] == {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}
    assert events[-1].data["steps"] == 1


@pytest.mark.asyncio
async def test_tool_call_then_answer():
    ai = FakeAIService(
        [
            [_token("Searching. "), _tool_call("t1", "news"), _usage(10, 3)],
            [_token("Answer"), _usage(20, 4), {"event": "done", "data": {"finish_reason": "stop"}}],
        ]
    )
    messages = [{"role": "user", "content": "what's new?"}]
    events = await _run(ai, _echo_executor, messages=messages)

    kinds = [e.kind for e in events]
    assert kinds == ["token", "tool_call_start", "tool_call_end", "token", "done"]
    end = events[2]
    assert end.data["status"] == "success"
    assert end.data["output"]["results"][0]["title"] == "news"
    assert events[-1].data["usage"]["total_tokens"] == 37
    assert events[-1].data["steps"] == 2

    second_call = ai.calls[1]
    assert second_call[1]["role"] == "assistant"
    assert second_call[1]["tool_calls"][0]["id"] == "t1"
    assert second_call[2] == {"role": "tool", "tool_call_id": "t1", "content": json.dumps(end.data["output"])}


@pytest.mark.asyncio
async def test_tool_failure_reported_and_loop_continues():
    async def failing(name: str, args: dict) -> dict:
        raise RuntimeError("search down")

    ai = FakeAIService(
        [
            [_tool_call("t1", "x")],
            [_token("Sorry"), {"event": "done", "data": {"finish_reason": "stop"}}],
        ]
    )
    events = await _run(ai, failing)
    end = next(e for e in events if e.kind == "tool_call_end")
    assert end.data["status"] == "error"
    assert end.data["output"] == {"error": "search down"}
    assert events[-1].kind == "done"


@pytest.mark.asyncio
async def test_step_bound_ends_gracefully():
    ai = FakeAIService([[_tool_call("t", "again")]])
    events = await _run(ai, _echo_executor, max_steps=3)
    assert len(ai.calls) == 3
    assert events[-1].kind == "done"
    assert events[-1].data["finish_reason"] == "max_steps"
    assert sum(1 for e in events if e.kind == "tool_call_end") == 3


@pytest.mark.asyncio
async def test_model_error_ends_loop():
    ai = FakeAIService(
        [[_token("partial"), {"event": "error", "data": {"message": "Rate limited", "code": "rate_limit", "retryable": True}}]]
    )
    events = await _run(ai, _echo_executor)
    assert [e.kind for e in events] == ["token", "error"]
    assert events[-1].data["code"] == "rate_limit"

