# fieldops/__init__.py
from __future__ import annotations

from .backend import BackendClient, eq, in_, is_null, neq
from .config import ClientConfig, load_config
from .errors import (
    FieldOpsError,
    InvalidInputError,
    NotAuthenticatedError,
    RemoteError,
    SchemaMismatchError,
    TransportError,
)
from .missions import fetch_status_timeline, set_mission_status, suggest_transitions
from .offers import accept_offer, publish_mission
from .realtime import RealtimeClient, Subscription

__all__ = [
    "BackendClient",
    "ClientConfig",
    "load_config",
    "eq",
    "neq",
    "in_",
    "is_null",
    "FieldOpsError",
    "InvalidInputError",
    "NotAuthenticatedError",
    "RemoteError",
    "SchemaMismatchError",
    "TransportError",
    "set_mission_status",
    "suggest_transitions",
    "fetch_status_timeline",
    "publish_mission",
    "accept_offer",
    "RealtimeClient",
    "Subscription",
]
