from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

# Bumped whenever a row shape below changes. Both sides compare it on every response.
SCHEMA_VERSION = 1
SCHEMA_VERSION_HEADER = "X-Schema-Version"


def as_utc(v: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MissionStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ACCEPTED = "ACCEPTED"
    PLANNED = "PLANNED"
    EN_ROUTE = "EN_ROUTE"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    BILLABLE = "BILLABLE"
    BILLED = "BILLED"
    PAID = "PAID"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class TransitionChannel(str, Enum):
    MANUAL = "MANUAL"
    AUTO = "AUTO"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Role(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"
    SUBCONTRACTOR = "subcontractor"


class _Row(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)


class Profile(_Row):
    id: str
    full_name: str
    role: Role
    active: bool = True


class Mission(_Row):
    id: str
    title: str
    status: MissionStatus
    type: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    scheduled_start: Optional[UtcDatetime] = None
    estimated_duration_min: Optional[int] = None
    price_subcontractor_cents: Optional[int] = None
    currency: str = "EUR"
    assigned_user_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: UtcDatetime
    updated_at: Optional[UtcDatetime] = None
    accepted_at: Optional[UtcDatetime] = None


class StatusTransition(_Row):
    id: int
    mission_id: str
    from_status: Optional[MissionStatus] = None
    to_status: MissionStatus
    via: TransitionChannel
    note: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[str] = None
    created_at: UtcDatetime


class Offer(_Row):
    id: int
    mission_id: str
    user_id: str
    sent_at: UtcDatetime
    expires_at: UtcDatetime
    expired: bool = False
    accepted_at: Optional[UtcDatetime] = None
    refused_at: Optional[UtcDatetime] = None

    @property
    def ttl(self) -> timedelta:
        return self.expires_at - self.sent_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expired:
            return True
        return self.expires_at <= (now or utcnow())

    def is_pending(self, now: Optional[datetime] = None) -> bool:
        return (
            self.accepted_at is None
            and self.refused_at is None
            and not self.is_expired(now)
        )


class Notification(_Row):
    id: int
    user_id: str
    title: str
    body: Optional[str] = None
    kind: str = "info"
    mission_id: Optional[str] = None
    created_at: UtcDatetime
    read_at: Optional[UtcDatetime] = None
    archived_at: Optional[UtcDatetime] = None
    deleted_at: Optional[UtcDatetime] = None


class ChatMessage(_Row):
    id: int
    conversation_id: str
    sender_id: str
    content: str
    created_at: UtcDatetime
    deleted_at: Optional[UtcDatetime] = None


class ChangeEvent(BaseModel):
    table: str
    type: ChangeType
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None
    commit_timestamp: UtcDatetime

    def typed_record(self) -> Optional[BaseModel]:
        """The new row parsed through its table's row model."""
        model = TABLE_MODELS.get(self.table)
        if model is None or self.record is None:
            return None
        return model.model_validate(self.record)


# table name -> row model, the full contract of the query surface
TABLE_MODELS: Dict[str, type[_Row]] = {
    "profiles": Profile,
    "missions": Mission,
    "mission_status_log": StatusTransition,
    "mission_offers": Offer,
    "notifications": Notification,
    "chat_messages": ChatMessage,
}


__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_VERSION_HEADER",
    "UtcDatetime",
    "as_utc",
    "utcnow",
    "MissionStatus",
    "TransitionChannel",
    "ChangeType",
    "Role",
    "Profile",
    "Mission",
    "StatusTransition",
    "Offer",
    "Notification",
    "ChatMessage",
    "ChangeEvent",
    "TABLE_MODELS",
]
