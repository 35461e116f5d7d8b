# hub/db_models.py
from __future__ import annotations

import hashlib
import uuid
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

from lifecycle.types import TABLE_MODELS, MissionStatus, utcnow

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


def hash_api_key(api_key: str) -> str:
    # Stable hashing for lookup.
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(32), primary_key=True, default=new_id)
    full_name = Column(String(200), nullable=False)
    role = Column(String(32), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(32), ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String(128), nullable=False, default="default")
    prefix = Column(String(64), nullable=False, index=True)
    key_hash = Column(String(64), nullable=False, unique=True, index=True)
    enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class Mission(Base):
    __tablename__ = "missions"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(300), nullable=False)
    status = Column(String(32), nullable=False, default=MissionStatus.DRAFT.value, index=True)
    type = Column(String(64), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(128), nullable=True)
    scheduled_start = Column(DateTime(timezone=True), nullable=True)
    estimated_duration_min = Column(Integer, nullable=True)
    price_subcontractor_cents = Column(Integer, nullable=True)
    currency = Column(String(8), nullable=False, default="EUR")
    assigned_user_id = Column(String(32), ForeignKey("profiles.id"), nullable=True, index=True)
    created_by = Column(String(32), ForeignKey("profiles.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)


class MissionStatusLog(Base):
    __tablename__ = "mission_status_log"

    id = Column(Integer, primary_key=True)
    mission_id = Column(String(32), ForeignKey("missions.id"), nullable=False, index=True)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=False)
    via = Column(String(16), nullable=False)
    note = Column(Text, nullable=True)
    context = Column(JSON, nullable=False, default=dict)
    actor_id = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class MissionOffer(Base):
    __tablename__ = "mission_offers"
    __table_args__ = (UniqueConstraint("mission_id", "user_id", name="uq_offer_mission_user"),)

    id = Column(Integer, primary_key=True)
    mission_id = Column(String(32), ForeignKey("missions.id"), nullable=False, index=True)
    user_id = Column(String(32), ForeignKey("profiles.id"), nullable=False, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    expired = Column(Boolean, nullable=False, default=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    refused_at = Column(DateTime(timezone=True), nullable=True)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(32), ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    body = Column(Text, nullable=True)
    kind = Column(String(64), nullable=False, default="info")
    mission_id = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    read_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True)
    conversation_id = Column(String(64), nullable=False, index=True)
    sender_id = Column(String(32), ForeignKey("profiles.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


def row_dict(obj: Any) -> Dict[str, Any]:
    """Serialize an ORM row through its schema model; JSON-safe, UTC timestamps."""
    model = TABLE_MODELS[obj.__tablename__]
    return model.model_validate(obj).model_dump(mode="json")
