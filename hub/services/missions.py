"""Mission lifecycle as executed by the hub: the only place status is written."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from hub.auth import Identity
from hub.db_models import Mission, MissionStatusLog, row_dict
from hub.errors import Forbidden, IllegalTransition, InvalidParams, NotFound, StatusConflict
from hub.metrics import STATUS_TRANSITIONS
from hub.query import coerce
from hub.realtime import ChangeBus, change
from lifecycle.graph import TransitionGraph
from lifecycle.types import ChangeEvent, ChangeType, MissionStatus, TransitionChannel, as_utc, utcnow

log = logging.getLogger("fieldops.missions")

# Descriptive payload only; status moves through mission_set_status.
WRITABLE_FIELDS = frozenset(
    {
        "title",
        "type",
        "address",
        "city",
        "scheduled_start",
        "estimated_duration_min",
        "price_subcontractor_cents",
        "currency",
    }
)


def load_mission(db: Session, mission_id: str, *, lock: bool = False) -> Mission:
    q = db.query(Mission).filter(Mission.id == mission_id)
    if lock:
        q = q.with_for_update()
    mission = q.first()
    if mission is None:
        raise NotFound(f"mission {mission_id} not found")
    return mission


def _log_timestamp(db: Session, mission_id: str, now: datetime) -> datetime:
    # History timestamps strictly increase per mission, even within one clock tick.
    last = (
        db.query(func.max(MissionStatusLog.created_at))
        .filter(MissionStatusLog.mission_id == mission_id)
        .scalar()
    )
    if last is not None:
        last = as_utc(last)
        if now <= last:
            return last + timedelta(microseconds=1)
    return now


def apply_transition(
    db: Session,
    graph: TransitionGraph,
    mission: Mission,
    to_status: MissionStatus,
    *,
    actor_id: Optional[str],
    via: TransitionChannel,
    note: Optional[str] = None,
    context: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
    assign_to: Optional[str] = None,
) -> Tuple[MissionStatusLog, Dict[str, Any]]:
    """
    Move mission to to_status and stage one history row. Caller commits.

    The status write is a compare-and-set on the status read earlier, so of
    two sessions racing from the same state only one moves the row; the
    other gets StatusConflict. With assign_to the row must also be
    unassigned, and is claimed for that user in the same statement.

    Returns the staged log row and the mission row as it was before.
    """
    now = now or utcnow()
    src = MissionStatus(mission.status)
    dst = MissionStatus(to_status)
    if not graph.allows(src, dst):
        raise IllegalTransition(f"illegal transition {src.value} -> {dst.value}")

    before = row_dict(mission)
    q = db.query(Mission).filter(Mission.id == mission.id, Mission.status == src.value)
    values: Dict[Any, Any] = {Mission.status: dst.value, Mission.updated_at: now}
    if assign_to is not None:
        q = q.filter(Mission.assigned_user_id.is_(None))
        values[Mission.assigned_user_id] = assign_to
        values[Mission.accepted_at] = now
    if q.update(values, synchronize_session="evaluate") != 1:
        raise StatusConflict(f"mission {mission.id} is no longer {src.value}")

    entry = MissionStatusLog(
        mission_id=mission.id,
        from_status=src.value,
        to_status=dst.value,
        via=TransitionChannel(via).value,
        note=note,
        context=dict(context or {}),
        actor_id=actor_id,
        created_at=_log_timestamp(db, mission.id, now),
    )
    db.add(entry)
    return entry, before


def transition_events(
    mission: Mission, before: Dict[str, Any], entry: MissionStatusLog
) -> List[ChangeEvent]:
    return [
        change("missions", ChangeType.UPDATE, row_dict(mission), before),
        change("mission_status_log", ChangeType.INSERT, row_dict(entry)),
    ]


def _may_move(identity: Identity, mission: Mission) -> bool:
    if identity.is_staff:
        return True
    return mission.assigned_user_id == identity.user_id


def set_mission_status(
    db: Session,
    bus: ChangeBus,
    graph: TransitionGraph,
    identity: Identity,
    *,
    mission_id: str,
    target_status: MissionStatus,
    actor_id: str,
    channel: TransitionChannel = TransitionChannel.MANUAL,
    note: Optional[str] = None,
    context: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if actor_id != identity.user_id:
        raise Forbidden("actor does not match the authenticated user")

    mission = load_mission(db, mission_id, lock=True)
    if not _may_move(identity, mission):
        raise Forbidden(f"mission {mission_id} is not assigned to you")

    entry, before = apply_transition(
        db,
        graph,
        mission,
        target_status,
        actor_id=actor_id,
        via=channel,
        note=note,
        context=context,
        now=now,
    )
    db.commit()
    db.refresh(entry)
    db.refresh(mission)

    STATUS_TRANSITIONS.labels(to_status=entry.to_status, via=entry.via).inc()
    log.info(
        "mission %s %s -> %s via=%s actor=%s",
        mission.id,
        entry.from_status,
        entry.to_status,
        entry.via,
        actor_id,
    )
    bus.publish_all(transition_events(mission, before, entry))
    return row_dict(entry)


def create_mission(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    values: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    values = dict(values)
    if "status" in values:
        raise InvalidParams("missions are created as DRAFT; status is changed through mission_set_status")
    unknown = set(values) - WRITABLE_FIELDS
    if unknown:
        raise InvalidParams(f"unknown mission fields: {', '.join(sorted(unknown))}")
    if not str(values.get("title") or "").strip():
        raise InvalidParams("title is required")

    mission = Mission(
        status=MissionStatus.DRAFT.value,
        created_by=identity.user_id,
        created_at=now or utcnow(),
    )
    for k, v in values.items():
        setattr(mission, k, coerce(Mission, k, v))
    db.add(mission)
    db.commit()
    db.refresh(mission)

    log.info("mission %s created by %s", mission.id, identity.user_id)
    row = row_dict(mission)
    bus.publish(change("missions", ChangeType.INSERT, row))
    return row


def update_mission(
    db: Session,
    bus: ChangeBus,
    mission_id: str,
    values: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    values = dict(values)
    if "status" in values:
        raise InvalidParams("status is changed through mission_set_status")
    unknown = set(values) - WRITABLE_FIELDS
    if unknown:
        raise InvalidParams(f"column(s) not writable on missions: {', '.join(sorted(unknown))}")

    mission = load_mission(db, mission_id, lock=True)
    before = row_dict(mission)
    for k, v in values.items():
        setattr(mission, k, coerce(Mission, k, v))
    mission.updated_at = now or utcnow()
    db.commit()
    db.refresh(mission)

    row = row_dict(mission)
    bus.publish(change("missions", ChangeType.UPDATE, row, before))
    return row
