"""SQLite data access layer for chats, messages and stream records."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from ..db import ThreadSafeConnection
from .messages import VALID_ROLES, normalize_parts

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for chat store failures."""


class OwnershipConflictError(StorageError):
    """The chat id is already bound to a different owner."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Chat {chat_id!r} already exists under a different user")
        self.chat_id = chat_id


class ChatNotFoundError(StorageError):
    """The chat does not exist or is not owned by the caller."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Chat {chat_id!r} not found or access denied")
        self.chat_id = chat_id


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


# --- Chats ---


def upsert_chat(
    db: ThreadSafeConnection,
    user_id: str,
    chat_id: str,
    title: str,
    messages: list[dict[str, Any]],
) -> dict[str, Any]:
    """Create the chat, or replace its entire message list if ``user_id`` owns it.

    Positions are reassigned ``0..n-1`` on every write. The delete and the
    inserts share one transaction, so no reader sees a chat without messages.
    """
    rows: list[tuple[Any, ...]] = []
    now = _now()
    for position, message in enumerate(messages):
        role = message.get("role")
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid message role {role!r}")
        rows.append(
            (
                str(message.get("id") or _uuid()),
                chat_id,
                role,
                json.dumps(normalize_parts(message)),
                position,
                now,
            )
        )

    with db.transaction() as conn:
        existing = conn.execute("SELECT user_id FROM chats WHERE id = ?", (chat_id,)).fetchone()
        if existing:
            if existing["user_id"] != user_id:
                raise OwnershipConflictError(chat_id)
            conn.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
            conn.execute("UPDATE chats SET title = ?, updated_at = ? WHERE id = ?", (title, now, chat_id))
        else:
            conn.execute(
                "INSERT INTO chats (id, user_id, title, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (chat_id, user_id, title, now, now),
            )
        conn.executemany(
            "INSERT INTO messages (id, chat_id, role, parts, position, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            rows,
        )

    logger.debug("Stored %d message(s) for chat %s", len(rows), chat_id)
    return {"id": chat_id, "user_id": user_id, "title": title, "updated_at": now}


def get_chat_summary(db: ThreadSafeConnection, user_id: str, chat_id: str) -> dict[str, Any] | None:
    row = db.execute_fetchone(
        "SELECT * FROM chats WHERE id = ? AND user_id = ?",
        (chat_id, user_id),
    )
    if not row:
        return None
    return dict(row)


def get_chat(db: ThreadSafeConnection, user_id: str, chat_id: str) -> dict[str, Any] | None:
    """Return the chat with messages in position order, or None if absent or not owned."""
    chat = get_chat_summary(db, user_id, chat_id)
    if not chat:
        return None
    rows = db.execute_fetchall(
        "SELECT id, role, parts, position FROM messages WHERE chat_id = ? ORDER BY position",
        (chat_id,),
    )
    # ``content`` stays empty: consumers read ``parts``
    chat["messages"] = [
        {"id": r["id"], "role": r["role"], "content": "", "parts": json.loads(r["parts"])} for r in rows
    ]
    return chat


def get_chats(db: ThreadSafeConnection, user_id: str) -> list[dict[str, Any]]:
    rows = db.execute_fetchall(
        "SELECT * FROM chats WHERE user_id = ? ORDER BY updated_at DESC, rowid DESC",
        (user_id,),
    )
    return [dict(r) for r in rows]


# --- Streams ---


def create_stream(db: ThreadSafeConnection, chat_id: str) -> str:
    stream_id = _uuid()
    db.execute(
        "INSERT INTO streams (id, chat_id, created_at) VALUES (?, ?, ?)",
        (stream_id, chat_id, _now()),
    )
    db.commit()
    return stream_id


def list_streams(db: ThreadSafeConnection, user_id: str, chat_id: str) -> list[dict[str, Any]]:
    """All streams of an owned chat, oldest first. The most recent is the last element."""
    if not get_chat_summary(db, user_id, chat_id):
        raise ChatNotFoundError(chat_id)
    rows = db.execute_fetchall(
        "SELECT * FROM streams WHERE chat_id = ? ORDER BY created_at ASC, rowid ASC",
        (chat_id,),
    )
    return [dict(r) for r in rows]
