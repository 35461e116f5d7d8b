"""
Mission data access: the status transition gateway, the status timeline and
plain mission reads/writes.

Legality of a transition is decided by the backend. The graph helpers here
only drive suggestions.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Union

from fieldops.backend import BackendClient, eq, parse_row, parse_rows
from fieldops.errors import InvalidInputError
from fieldops.realtime import RealtimeClient, Subscription
from lifecycle import COMPLETED_STATUSES
from lifecycle.graph import TransitionGraph
from lifecycle.types import ChangeEvent, Mission, MissionStatus, StatusTransition, TransitionChannel

log = logging.getLogger("fieldops.client")


def _require_id(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} is required")
    return value.strip()


def _status(value: Any) -> MissionStatus:
    try:
        return MissionStatus(getattr(value, "value", value))
    except ValueError:
        raise InvalidInputError(f"unknown status {value!r}") from None


def set_mission_status(
    backend: BackendClient,
    mission_id: str,
    target_status: Union[MissionStatus, str],
    *,
    note: Optional[str] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> StatusTransition:
    """
    Ask the backend to move a mission to target_status.

    Only presence is checked here. The authenticated user is attached as the
    actor; a rejected transition raises RemoteError with the backend's message.
    """
    mission_id = _require_id(mission_id, "mission_id")
    target = _status(target_status)
    if context is not None and not isinstance(context, Mapping):
        raise InvalidInputError("context must be a mapping")
    if note is not None and not isinstance(note, str):
        raise InvalidInputError("note must be a string")

    actor = backend.current_user()
    row = backend.rpc(
        "mission_set_status",
        {
            "mission_id": mission_id,
            "target_status": target.value,
            "actor_id": actor.id,
            "channel": TransitionChannel.MANUAL.value,
            "note": note,
            "context": dict(context or {}),
        },
    )
    log.info("mission %s moved to %s by %s", mission_id, target.value, actor.id)
    return parse_row(StatusTransition, row)


@dataclass(frozen=True)
class Suggestions:
    next_status: Optional[MissionStatus]
    side: List[MissionStatus] = field(default_factory=list)


def suggest_transitions(
    mission: Union[Mission, MissionStatus, str],
    graph: Optional[TransitionGraph] = None,
) -> Suggestions:
    """Advisory next step and side actions for display."""
    status = mission.status if isinstance(mission, Mission) else _status(mission)
    graph = graph or TransitionGraph.default()
    return Suggestions(next_status=graph.next_status(status), side=graph.side_transitions(status))


def fetch_transition_graph(backend: BackendClient) -> TransitionGraph:
    body = backend.get_json("/lifecycle/v1/graph")
    return TransitionGraph.from_pairs(body["edges"])


def fetch_status_timeline(backend: BackendClient, mission_id: str) -> List[StatusTransition]:
    """Every transition of the mission, newest first. Empty when there are none."""
    mission_id = _require_id(mission_id, "mission_id")
    rows = backend.select(
        "mission_status_log",
        filters={"mission_id": eq(mission_id)},
        order="created_at.desc,id.desc",
    )
    return parse_rows(StatusTransition, rows)


def fetch_missions(
    backend: BackendClient,
    *,
    status: Optional[Union[MissionStatus, str]] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Mission]:
    filters = {"status": eq(_status(status))} if status is not None else {}
    rows = backend.select(
        "missions", filters=filters, order="created_at.desc", limit=limit, offset=offset
    )
    return parse_rows(Mission, rows)


def get_mission(backend: BackendClient, mission_id: str) -> Optional[Mission]:
    rows = backend.select("missions", filters={"id": eq(_require_id(mission_id, "mission_id"))})
    return parse_row(Mission, rows[0]) if rows else None


def create_mission(backend: BackendClient, values: Mapping[str, Any]) -> Mission:
    if not str(values.get("title") or "").strip():
        raise InvalidInputError("title is required")
    return parse_row(Mission, backend.insert("missions", values))


def update_mission(backend: BackendClient, mission_id: str, values: Mapping[str, Any]) -> Mission:
    """Descriptive fields only; the backend refuses status here."""
    mission_id = _require_id(mission_id, "mission_id")
    return parse_row(Mission, backend.update("missions", mission_id, values))


def fetch_user_mission_history(backend: BackendClient, user_id: str) -> List[Mission]:
    rows = backend.select(
        "missions",
        filters={"assigned_user_id": eq(_require_id(user_id, "user_id"))},
        order="created_at.desc",
    )
    return parse_rows(Mission, rows)


@dataclass(frozen=True)
class MissionStats:
    total: int
    active: int
    completed: int
    earnings_cents: int


def mission_stats(missions: List[Mission]) -> MissionStats:
    completed = [m for m in missions if m.status in COMPLETED_STATUSES]
    active = [
        m for m in missions
        if m.status not in COMPLETED_STATUSES and m.status != MissionStatus.CANCELLED
    ]
    return MissionStats(
        total=len(missions),
        active=len(active),
        completed=len(completed),
        earnings_cents=sum(m.price_subcontractor_cents or 0 for m in completed),
    )


def fetch_user_mission_stats(backend: BackendClient, user_id: str) -> MissionStats:
    return mission_stats(fetch_user_mission_history(backend, user_id))


def subscribe_missions(
    realtime: RealtimeClient,
    handler: Callable[[ChangeEvent], None],
    *,
    mission_id: Optional[str] = None,
    event: str = "*",
) -> Subscription:
    row_filter = f"id={eq(mission_id)}" if mission_id else None
    return realtime.subscribe("missions", handler, event=event, filter=row_filter)


def subscribe_status_timeline(
    realtime: RealtimeClient,
    handler: Callable[[ChangeEvent], None],
    mission_id: str,
) -> Subscription:
    mission_id = _require_id(mission_id, "mission_id")
    return realtime.subscribe(
        "mission_status_log", handler, event="INSERT", filter=f"mission_id={eq(mission_id)}"
    )
