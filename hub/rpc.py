"""Remote procedures: POST /rpc/v1/<name> with a JSON object of named parameters."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from hub.auth import Identity, require_admin, require_identity
from hub.config import Settings
from hub.db import get_db
from hub.deps import get_bus, get_graph, get_settings
from hub.metrics import RPC_LATENCY_SECONDS
from hub.realtime import ChangeBus
from hub.services import missions, notifications, offers
from lifecycle.graph import TransitionGraph
from lifecycle.types import MissionStatus, TransitionChannel

router = APIRouter(prefix="/rpc/v1", tags=["rpc"])


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SetStatusParams(_Params):
    mission_id: str = Field(min_length=1)
    target_status: MissionStatus
    actor_id: str = Field(min_length=1)
    channel: TransitionChannel = TransitionChannel.MANUAL
    note: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class PublishParams(_Params):
    mission_id: str = Field(min_length=1)
    ttl_minutes: Optional[int] = None
    include_employees: bool = False


class MissionParams(_Params):
    mission_id: str = Field(min_length=1)


class NotificationParams(_Params):
    notification_id: int


class NoParams(_Params):
    pass


@router.post("/mission_set_status")
def mission_set_status(
    params: SetStatusParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    graph: TransitionGraph = Depends(get_graph),
    identity: Identity = Depends(require_identity),
) -> Dict[str, Any]:
    with RPC_LATENCY_SECONDS.labels(procedure="mission_set_status").time():
        return missions.set_mission_status(
            db,
            bus,
            graph,
            identity,
            mission_id=params.mission_id,
            target_status=params.target_status,
            actor_id=params.actor_id,
            channel=params.channel,
            note=params.note,
            context=params.context,
        )


@router.post("/publish_mission_offers")
def publish_mission_offers(
    params: PublishParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    graph: TransitionGraph = Depends(get_graph),
    settings: Settings = Depends(get_settings),
    identity: Identity = Depends(require_admin),
) -> int:
    ttl = params.ttl_minutes if params.ttl_minutes is not None else settings.default_offer_ttl_minutes
    with RPC_LATENCY_SECONDS.labels(procedure="publish_mission_offers").time():
        return offers.publish_mission_offers(
            db,
            bus,
            graph,
            identity,
            mission_id=params.mission_id,
            ttl_minutes=ttl,
            include_employees=params.include_employees,
        )


@router.post("/accept_mission_offer")
def accept_mission_offer(
    params: MissionParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    graph: TransitionGraph = Depends(get_graph),
    identity: Identity = Depends(require_identity),
) -> str:
    with RPC_LATENCY_SECONDS.labels(procedure="accept_mission_offer").time():
        return offers.accept_mission_offer(db, bus, graph, identity, mission_id=params.mission_id)


@router.post("/refuse_mission_offer")
def refuse_mission_offer(
    params: MissionParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    identity: Identity = Depends(require_identity),
) -> str:
    with RPC_LATENCY_SECONDS.labels(procedure="refuse_mission_offer").time():
        return offers.refuse_mission_offer(db, bus, identity, mission_id=params.mission_id)


@router.post("/expire_stale_offers")
def expire_stale_offers(
    params: NoParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    _: Identity = Depends(require_admin),
) -> int:
    with RPC_LATENCY_SECONDS.labels(procedure="expire_stale_offers").time():
        return offers.expire_stale_offers(db, bus)


@router.post("/mark_notification_read")
def mark_notification_read(
    params: NotificationParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    identity: Identity = Depends(require_identity),
) -> None:
    with RPC_LATENCY_SECONDS.labels(procedure="mark_notification_read").time():
        notifications.mark_notification_read(
            db, bus, identity, notification_id=params.notification_id
        )


@router.post("/mark_all_notifications_read")
def mark_all_notifications_read(
    params: NoParams,
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    identity: Identity = Depends(require_identity),
) -> int:
    with RPC_LATENCY_SECONDS.labels(procedure="mark_all_notifications_read").time():
        return notifications.mark_all_notifications_read(db, bus, identity)
