# lifecycle/__init__.py
from __future__ import annotations

from .graph import (
    CANONICAL_ORDER,
    TERMINAL,
    TransitionError,
    TransitionGraph,
    parse_edges,
)
from .types import (
    SCHEMA_VERSION,
    SCHEMA_VERSION_HEADER,
    TABLE_MODELS,
    ChangeEvent,
    ChangeType,
    ChatMessage,
    Mission,
    MissionStatus,
    Notification,
    Offer,
    Profile,
    Role,
    StatusTransition,
    TransitionChannel,
    as_utc,
    utcnow,
)

# Statuses counted as "completed work" in per-user stats.
COMPLETED_STATUSES = frozenset(
    {
        MissionStatus.DONE,
        MissionStatus.BILLABLE,
        MissionStatus.BILLED,
        MissionStatus.PAID,
        MissionStatus.CLOSED,
    }
)

__all__ = [
    "CANONICAL_ORDER",
    "TERMINAL",
    "COMPLETED_STATUSES",
    "TransitionError",
    "TransitionGraph",
    "parse_edges",
    "SCHEMA_VERSION",
    "SCHEMA_VERSION_HEADER",
    "TABLE_MODELS",
    "ChangeEvent",
    "ChangeType",
    "ChatMessage",
    "Mission",
    "MissionStatus",
    "Notification",
    "Offer",
    "Profile",
    "Role",
    "StatusTransition",
    "TransitionChannel",
    "as_utc",
    "utcnow",
]
