from __future__ import annotations

from typing import Callable, List

from fieldops.backend import BackendClient, eq, is_null, parse_row, parse_rows
from fieldops.errors import InvalidInputError
from fieldops.realtime import RealtimeClient, Subscription
from lifecycle.types import ChangeEvent, ChatMessage, utcnow


def _conversation(conversation_id: str) -> str:
    if not isinstance(conversation_id, str) or not conversation_id.strip():
        raise InvalidInputError("conversation_id is required")
    return conversation_id.strip()


def send_message(backend: BackendClient, conversation_id: str, content: str) -> ChatMessage:
    conversation_id = _conversation(conversation_id)
    if not isinstance(content, str) or not content.strip():
        raise InvalidInputError("content is required")
    row = backend.insert("chat_messages", {"conversation_id": conversation_id, "content": content})
    return parse_row(ChatMessage, row)


def fetch_messages(backend: BackendClient, conversation_id: str) -> List[ChatMessage]:
    """Oldest first; soft-deleted messages are left out."""
    rows = backend.select(
        "chat_messages",
        filters={"conversation_id": eq(_conversation(conversation_id)), "deleted_at": is_null()},
        order="created_at.asc,id.asc",
    )
    return parse_rows(ChatMessage, rows)


def delete_message(backend: BackendClient, message_id: int) -> ChatMessage:
    row = backend.update("chat_messages", int(message_id), {"deleted_at": utcnow().isoformat()})
    return parse_row(ChatMessage, row)


def subscribe_conversation_messages(
    realtime: RealtimeClient,
    handler: Callable[[ChangeEvent], None],
    conversation_id: str,
) -> Subscription:
    return realtime.subscribe(
        "chat_messages",
        handler,
        filter=f"conversation_id={eq(_conversation(conversation_id))}",
    )
