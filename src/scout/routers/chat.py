"""Chat streaming endpoints: start a generation, resume the latest one."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from ..models import ChatRequest
from ..services import storage
from ..services.generation import GenerationOrchestrator
from ..services.messages import derive_title
from ..services.stream_events import AppendMessage, Chunk, encode_event
from .deps import get_context, require_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _last_event_id(request: Request) -> int | None:
    """Offset of the last chunk an EventSource client saw, from the Last-Event-ID header."""
    raw = request.headers.get("last-event-id", "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Last-Event-ID")
    return value if value >= 0 else None


async def _frames(chunks: AsyncIterator[Chunk], start: int = 0) -> AsyncIterator[dict[str, Any]]:
    """Tag each chunk with its offset in the stream as the SSE event id."""
    offset = start
    async for chunk in chunks:
        yield {**chunk, "id": str(offset)}
        offset += 1


async def _one_shot(*chunks: Chunk) -> AsyncIterator[Chunk]:
    for chunk in chunks:
        yield chunk


@router.post("/chat")
async def start_chat(request: Request) -> EventSourceResponse:
    ctx = get_context(request)
    user = require_user(request, ctx)

    try:
        body = ChatRequest.model_validate(await request.json())
    except (ValidationError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid request body")
    if not body.messages:
        raise HTTPException(status_code=400, detail="No messages provided")

    chat_id = body.chat_id
    messages = [m.model_dump(exclude_none=True) for m in body.messages]

    if body.is_new_chat:
        try:
            storage.upsert_chat(ctx.db, user.id, chat_id, derive_title(messages), messages)
        except storage.OwnershipConflictError:
            raise HTTPException(status_code=404, detail="Chat not found or unauthorized")
    elif not storage.get_chat_summary(ctx.db, user.id, chat_id):
        raise HTTPException(status_code=404, detail="Chat not found or unauthorized")

    previous_streams = storage.list_streams(ctx.db, user.id, chat_id)
    stream_id = storage.create_stream(ctx.db, chat_id)
    for previous in previous_streams:
        ctx.broker.discard(previous["id"])

    orchestrator = GenerationOrchestrator(
        ai_service=ctx.ai_service,
        search=ctx.search,
        db=ctx.db,
        tracer=ctx.tracer,
        max_steps=ctx.config.ai.max_steps,
        persist_attempts=ctx.config.streams.persist_attempts,
    )
    chunks = ctx.broker.produce(
        stream_id,
        lambda: orchestrator.run(user.id, chat_id, messages, body.is_new_chat),
    )
    logger.info("Started stream %s for chat %s (%d message(s))", stream_id, chat_id, len(messages))
    return EventSourceResponse(_frames(chunks), headers={"X-Stream-Id": stream_id})


@router.get("/chat")
async def resume_chat(request: Request, chat_id: str | None = Query(default=None, alias="chatId")) -> EventSourceResponse:
    if not chat_id:
        raise HTTPException(status_code=400, detail="Missing chatId")

    ctx = get_context(request)
    user = require_user(request, ctx)

    trace = ctx.tracer.trace("stream-resumption", user_id=user.id, session_id=chat_id, metadata={"chatId": chat_id})

    try:
        streams = storage.list_streams(ctx.db, user.id, chat_id)
    except storage.ChatNotFoundError:
        trace.update(output={"error": "Chat not found or access denied"})
        raise HTTPException(status_code=404, detail="Chat not found or access denied")

    if not streams:
        raise HTTPException(status_code=404, detail="No stream found")

    recent_stream_id = streams[-1]["id"]
    last_seen = _last_event_id(request)
    start = last_seen + 1 if last_seen is not None else 0

    resumed = ctx.broker.resume(recent_stream_id, start=start)
    if resumed is not None:
        logger.info("Resuming stream %s for chat %s from offset %d", recent_stream_id, chat_id, start)
        trace.update(output={"action": "resumed-stream", "streamId": recent_stream_id, "offset": start})
        return EventSourceResponse(_frames(resumed, start))

    chat = storage.get_chat(ctx.db, user.id, chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")

    most_recent = chat["messages"][-1] if chat["messages"] else None
    if most_recent is None or most_recent["role"] != "assistant":
        trace.update(output={"action": "empty-stream"})
        return EventSourceResponse(_frames(_one_shot()))

    trace.update(output={"action": "restored-stream", "messageRestored": True})
    ctx.tracer.flush_in_background()
    return EventSourceResponse(_frames(_one_shot(encode_event(AppendMessage(message=most_recent)))))
