"""Chat history endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..models import ChatDetail, ChatSummary
from ..services import storage
from .deps import get_context, require_user

router = APIRouter(tags=["chats"])


@router.get("/chats")
async def list_chats(request: Request) -> list[ChatSummary]:
    ctx = get_context(request)
    user = require_user(request, ctx)
    return [ChatSummary(**c) for c in storage.get_chats(ctx.db, user.id)]


@router.get("/chats/{chat_id}")
async def get_chat(chat_id: str, request: Request) -> ChatDetail:
    ctx = get_context(request)
    user = require_user(request, ctx)
    chat = storage.get_chat(ctx.db, user.id, chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    return ChatDetail(**chat)
