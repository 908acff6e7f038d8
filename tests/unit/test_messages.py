"""Tests for message format helpers."""

from __future__ import annotations

import json

from scout.services.messages import derive_title, message_text, normalize_parts, to_openai_messages


def _invocation(call_id: str, state: str = "result", result=None) -> dict:
    inv = {"state": state, "toolCallId": call_id, "toolName": "search_web", "args": {"query": "q"}}
    if state == "result":
        inv["result"] = result if result is not None else {"results": []}
    return {"type": "tool-invocation", "toolInvocation": inv}


class TestNormalizeParts:
    def test_parts_preferred(self) -> None:
        parts = [{"type": "text", "text": "p"}]
        assert normalize_parts({"content": "c", "parts": parts}) == parts

    def test_content_fallback(self) -> None:
        assert normalize_parts({"content": "c"}) == [{"type": "text", "text": "c"}]

    def test_empty(self) -> None:
        assert normalize_parts({"content": "", "parts": []}) == []


class TestMessageText:
    def test_joins_text_parts(self) -> None:
        msg = {"content": "", "parts": [{"type": "text", "text": "a"}, _invocation("t1"), {"type": "text", "text": "b"}]}
        assert message_text(msg) == "ab"


class TestDeriveTitle:
    def test_uses_last_user_message(self) -> None:
        messages = [
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": "answer"},
            {"role": "user", "content": "second question"},
        ]
        assert derive_title(messages) == "second question..."

    def test_truncates_to_fifty_chars(self) -> None:
        text = "x" * 80
        assert derive_title([{"role": "user", "content": text}]) == "x" * 50 + "..."

    def test_reads_parts(self) -> None:
        msg = {"role": "user", "content": "", "parts": [{"type": "text", "text": "from parts"}]}
        assert derive_title([msg]) == "from parts..."

    def test_default_without_user_text(self) -> None:
        assert derive_title([{"role": "assistant", "content": "hi"}]) == "New Chat"
        assert derive_title([]) == "New Chat"


class TestToOpenAIMessages:
    def test_plain_messages(self) -> None:
        result = to_openai_messages(
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        )
        assert result == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    def test_assistant_tool_invocations_become_tool_calls(self) -> None:
        msg = {
            "role": "assistant",
            "content": "",
            "parts": [
                {"type": "text", "text": "Let me look. "},
                _invocation("t1", result={"results": [{"title": "A"}]}),
                {"type": "text", "text": "Found it."},
            ],
        }
        result = to_openai_messages([msg])
        assert [m["role"] for m in result] == ["assistant", "tool", "assistant"]
        assert result[0]["content"] == "Let me look. "
        assert result[0]["tool_calls"][0]["id"] == "t1"
        assert json.loads(result[0]["tool_calls"][0]["function"]["arguments"]) == {"query": "q"}
        assert result[1]["tool_call_id"] == "t1"
        assert json.loads(result[1]["content"]) == {"results": [{"title": "A"}]}
        assert result[2] == {"role": "assistant", "content": "Found it."}

    def test_unfinished_invocations_dropped(self) -> None:
        msg = {"role": "assistant", "content": "", "parts": [{"type": "text", "text": "x"}, _invocation("t1", "call")]}
        assert to_openai_messages([msg]) == [{"role": "assistant", "content": "x"}]

    def test_tool_role_results(self) -> None:
        msg = {
            "role": "tool",
            "content": "",
            "parts": [{"type": "tool-result", "toolCallId": "t9", "toolName": "search_web", "result": {"ok": 1}}],
        }
        assert to_openai_messages([msg]) == [{"role": "tool", "tool_call_id": "t9", "content": '{"ok": 1}'}]
