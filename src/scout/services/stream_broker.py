"""In-process resumable stream broker.

A producer's output is written into a per-stream channel: an append-only
chunk buffer plus a finished flag. Any number of readers walk the buffer with
their own cursor, first replaying what is already there and then following
the live tail until the channel finishes. The producer runs as its own task,
so closing the HTTP response that started it does not stop generation.

Finished channels stay replayable for ``retention`` seconds and are then
evicted; after that ``resume`` reports that no channel exists.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)

Producer = Callable[[], AsyncIterator[Any]]


class StreamChannel:
    """Chunk buffer for one stream id. Single writer, many readers."""

    def __init__(self, stream_id: str, clock: Callable[[], float] = time.monotonic) -> None:
        self.stream_id = stream_id
        self._clock = clock
        self._chunks: list[Any] = []
        self._changed = asyncio.Event()
        self.finished = False
        self.error: BaseException | None = None
        self.finished_at: float | None = None
        self.task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def live(self) -> bool:
        return not self.finished

    def publish(self, chunk: Any) -> None:
        if self.finished:
            raise RuntimeError(f"Channel {self.stream_id} is finished")
        self._chunks.append(chunk)
        self._wake()

    def finish(self, error: BaseException | None = None) -> None:
        if self.finished:
            return
        self.finished = True
        self.error = error
        self.finished_at = self._clock()
        self._wake()

    def _wake(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def read(self, start: int = 0) -> AsyncIterator[Any]:
        """Yield every chunk from offset ``start`` on, then follow the tail until finished."""
        cursor = max(0, start)
        while True:
            # Grab the wakeup event before checking the buffer so a publish
            # between the check and the wait is never missed.
            changed = self._changed
            while cursor < len(self._chunks):
                chunk = self._chunks[cursor]
                cursor += 1
                yield chunk
            if self.finished:
                return
            await changed.wait()


class ResumableStreamBroker:
    def __init__(
        self,
        max_duration: float = 60.0,
        retention: float = 300.0,
        sweep_interval: float = 30.0,
        error_chunk: Callable[[BaseException], Any] | None = None,
        is_terminal: Callable[[Any], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_duration = max_duration
        self.retention = retention
        self.sweep_interval = sweep_interval
        self._error_chunk = error_chunk
        self._is_terminal = is_terminal
        self._clock = clock
        self._channels: dict[str, StreamChannel] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def produce(self, stream_id: str, producer: Producer) -> AsyncIterator[Any]:
        """Start ``producer`` for ``stream_id`` and return a reader over its whole output.

        If the stream already has a channel the producer is not started again;
        the caller is attached to the existing channel instead.
        """
        self.sweep()
        channel = self.get_channel(stream_id)
        if channel is not None:
            logger.info("Stream %s already has a channel; attaching instead of producing", stream_id)
            return channel.read()

        channel = StreamChannel(stream_id, clock=self._clock)
        self._channels[stream_id] = channel
        channel.task = asyncio.create_task(self._run(channel, producer), name=f"stream-producer:{stream_id}")
        return channel.read()

    def resume(self, stream_id: str, start: int = 0) -> AsyncIterator[Any] | None:
        """Reader over a live or buffered channel, or None when no channel exists."""
        self.sweep()
        channel = self.get_channel(stream_id)
        if channel is None:
            logger.debug("No channel for stream %s", stream_id)
            return None
        return channel.read(start)

    def get_channel(self, stream_id: str) -> StreamChannel | None:
        return self._channels.get(stream_id)

    def discard(self, stream_id: str) -> bool:
        """Drop a finished channel ahead of its expiry. Live channels are kept."""
        channel = self.get_channel(stream_id)
        if channel is None or channel.live:
            return False
        del self._channels[stream_id]
        return True

    def sweep(self) -> int:
        """Evict finished channels whose retention has elapsed. Returns the number evicted."""
        now = self._clock()
        expired = [
            sid
            for sid, ch in self._channels.items()
            if ch.finished and ch.finished_at is not None and now - ch.finished_at >= self.retention
        ]
        for sid in expired:
            del self._channels[sid]
        if expired:
            logger.debug("Evicted %d expired stream channel(s)", len(expired))
        return len(expired)

    async def _run(self, channel: StreamChannel, producer: Producer) -> None:
        try:
            await asyncio.wait_for(self._drain(channel, producer), timeout=self.max_duration)
        except asyncio.CancelledError as exc:
            logger.info("Producer for stream %s cancelled", channel.stream_id)
            self._fail(channel, exc)
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("Producer for stream %s exceeded %.0fs; terminated", channel.stream_id, self.max_duration)
            self._fail(channel, exc)
        except Exception as exc:
            logger.exception("Producer for stream %s failed", channel.stream_id)
            self._fail(channel, exc)
        else:
            channel.finish()

    async def _drain(self, channel: StreamChannel, producer: Producer) -> None:
        stream = producer()
        try:
            async for chunk in stream:
                channel.publish(chunk)
                if self._is_terminal is not None and self._is_terminal(chunk):
                    # Readers are released at once; anything the producer would do next is dropped.
                    channel.finish()
                    break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _fail(self, channel: StreamChannel, exc: BaseException) -> None:
        if self._error_chunk is not None and channel.live:
            channel.publish(self._error_chunk(exc))
        channel.finish(error=exc)

    # --- Lifecycle ---

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="stream-broker-sweeper")

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    async def close(self) -> None:
        """Stop the sweeper and cancel producers that are still running."""
        tasks = [t for t in (ch.task for ch in self._channels.values()) if t is not None and not t.done()]
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._channels.clear()
