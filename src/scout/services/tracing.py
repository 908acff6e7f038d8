"""Langfuse tracing sink.

When tracing keys are not configured every call is a no-op, so callers never
branch on whether tracing is enabled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from langfuse import Langfuse

from ..config import TracingConfig

logger = logging.getLogger(__name__)


class TraceHandle:
    """A single trace. Wraps a Langfuse trace client, or nothing when disabled."""

    def __init__(self, trace: Any = None) -> None:
        self._trace = trace

    @property
    def id(self) -> str | None:
        return getattr(self._trace, "id", None)

    def generation(self, **kwargs: Any) -> None:
        if self._trace is None:
            return
        try:
            self._trace.generation(**kwargs)
        except Exception:
            logger.warning("Failed to record generation on trace", exc_info=True)

    def update(self, **kwargs: Any) -> None:
        if self._trace is None:
            return
        try:
            self._trace.update(**kwargs)
        except Exception:
            logger.warning("Failed to update trace", exc_info=True)


class Tracer:
    def __init__(self, config: TracingConfig, client: Langfuse | None = None) -> None:
        self.config = config
        self._client = client
        self._pending: set[asyncio.Task[None]] = set()
        if self._client is None and config.enabled:
            self._client = Langfuse(
                public_key=config.public_key,
                secret_key=config.secret_key,
                host=config.host,
                environment=config.environment,
            )
        if self._client is None:
            logger.info("Langfuse not configured. Tracing disabled.")

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def trace(
        self,
        name: str,
        user_id: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TraceHandle:
        if self._client is None:
            return TraceHandle()
        try:
            return TraceHandle(
                self._client.trace(name=name, user_id=user_id, session_id=session_id, metadata=metadata or {})
            )
        except Exception:
            logger.warning("Failed to start trace %s", name, exc_info=True)
            return TraceHandle()

    async def flush(self) -> None:
        if self._client is None:
            return
        try:
            await asyncio.to_thread(self._client.flush)
        except Exception:
            logger.warning("Langfuse flush failed", exc_info=True)

    def flush_in_background(self) -> None:
        """Schedule a flush without waiting for it. Pending flushes are awaited on shutdown."""
        if self._client is None:
            return
        task = asyncio.create_task(self.flush(), name="langfuse-flush")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def shutdown(self) -> None:
        if self._client is None:
            return
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        try:
            await asyncio.to_thread(self._client.shutdown)
        except Exception:
            logger.warning("Langfuse shutdown failed", exc_info=True)
