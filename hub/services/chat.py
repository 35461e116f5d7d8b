from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from hub.auth import Identity
from hub.db_models import ChatMessage, row_dict
from hub.errors import InvalidParams, NotFound
from hub.query import coerce
from hub.realtime import ChangeBus, change
from lifecycle.types import ChangeType, utcnow


def send_message(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    values: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    unknown = set(values) - {"conversation_id", "content"}
    if unknown:
        raise InvalidParams(f"unknown chat_messages fields: {', '.join(sorted(unknown))}")
    conversation_id = str(values.get("conversation_id") or "").strip()
    content = str(values.get("content") or "")
    if not conversation_id:
        raise InvalidParams("conversation_id is required")
    if not content.strip():
        raise InvalidParams("content is required")

    msg = ChatMessage(
        conversation_id=conversation_id,
        sender_id=identity.user_id,
        content=content,
        created_at=now or utcnow(),
    )
    db.add(msg)
    db.commit()
    db.refresh(msg)

    row = row_dict(msg)
    bus.publish(change("chat_messages", ChangeType.INSERT, row))
    return row


def update_message(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    message_id: int,
    values: Mapping[str, Any],
) -> Dict[str, Any]:
    """Senders may only soft-delete their own messages."""
    unknown = set(values) - {"deleted_at"}
    if unknown:
        raise InvalidParams(f"column(s) not writable on chat_messages: {', '.join(sorted(unknown))}")

    msg = (
        db.query(ChatMessage)
        .filter(ChatMessage.id == message_id, ChatMessage.sender_id == identity.user_id)
        .first()
    )
    if msg is None:
        raise NotFound(f"message {message_id} not found")

    before = row_dict(msg)
    if "deleted_at" in values:
        msg.deleted_at = coerce(ChatMessage, "deleted_at", values["deleted_at"])
    db.commit()
    db.refresh(msg)

    row = row_dict(msg)
    bus.publish(change("chat_messages", ChangeType.UPDATE, row, before))
    return row
