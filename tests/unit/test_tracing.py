"""Tests for the Langfuse tracing wrapper."""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

import pytest

from scout.config import TracingConfig
from scout.services.tracing import TraceHandle, Tracer


class TestDisabled:
    def test_no_keys_means_disabled(self) -> None:
        with patch("scout.services.tracing.Langfuse") as mock_langfuse:
            tracer = Tracer(TracingConfig())
        mock_langfuse.assert_not_called()
        assert tracer.enabled is False

    def test_trace_is_noop(self) -> None:
        handle = Tracer(TracingConfig()).trace("chat", user_id="u1")
        assert handle.id is None
        handle.update(output={"x": 1})
        handle.generation(name="g")

    @pytest.mark.asyncio
    async def test_flush_and_shutdown_are_noops(self) -> None:
        tracer = Tracer(TracingConfig())
        await tracer.flush()
        await tracer.shutdown()


class TestEnabled:
    def test_client_built_from_config(self) -> None:
        config = TracingConfig(public_key="pk", secret_key="sk", host="https://lf.example", environment="test")
        with patch("scout.services.tracing.Langfuse") as mock_langfuse:
            tracer = Tracer(config)
        mock_langfuse.assert_called_once_with(
            public_key="pk", secret_key="sk", host="https://lf.example", environment="test"
        )
        assert tracer.enabled is True

    def test_trace_passes_identity(self) -> None:
        client = MagicMock()
        client.trace.return_value.id = "trace-1"
        handle = Tracer(TracingConfig(), client=client).trace(
            "stream-resumption", user_id="u1", session_id="c1", metadata={"chatId": "c1"}
        )
        client.trace.assert_called_once_with(
            name="stream-resumption", user_id="u1", session_id="c1", metadata={"chatId": "c1"}
        )
        assert handle.id == "trace-1"

    def test_trace_failure_returns_noop_handle(self) -> None:
        client = MagicMock()
        client.trace.side_effect = RuntimeError("network")
        handle = Tracer(TracingConfig(), client=client).trace("chat")
        assert handle.id is None

    def test_handle_swallows_sink_errors(self) -> None:
        trace = MagicMock()
        trace.update.side_effect = RuntimeError("boom")
        trace.generation.side_effect = RuntimeError("boom")
        handle = TraceHandle(trace)
        handle.update(output={})
        handle.generation(name="g")
        trace.update.assert_called_once()

    @pytest.mark.asyncio
    async def test_flush_and_shutdown(self) -> None:
        client = MagicMock()
        tracer = Tracer(TracingConfig(), client=client)
        await tracer.flush()
        await tracer.shutdown()
        client.flush.assert_called_once()
        client.shutdown.assert_called_once()

    @pytest.mark.asyncio
    async def test_flush_failure_logged_not_raised(self) -> None:
        client = MagicMock()
        client.flush.side_effect = RuntimeError("down")
        await Tracer(TracingConfig(), client=client).flush()


class TestBackgroundFlush:
    @pytest.mark.asyncio
    async def test_disabled_is_noop(self) -> None:
        tracer = Tracer(TracingConfig())
        tracer.flush_in_background()
        await tracer.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_pending_flush(self) -> None:
        flushed = []

        def slow_flush() -> None:
            time.sleep(0.05)
            flushed.append(1)

        client = MagicMock()
        client.flush.side_effect = slow_flush
        tracer = Tracer(TracingConfig(), client=client)

        tracer.flush_in_background()
        assert flushed == []
        await tracer.shutdown()

        assert flushed == [1]
        client.shutdown.assert_called_once()
