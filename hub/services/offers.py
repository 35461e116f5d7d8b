from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from hub.auth import Identity
from hub.db_models import MissionOffer, Profile, row_dict
from hub.errors import IllegalTransition, InvalidParams, NotPublishable, StatusConflict
from hub.metrics import OFFER_ACCEPTANCE_RESULTS, OFFERS_ISSUED, STATUS_TRANSITIONS
from hub.realtime import ChangeBus, change
from hub.services.missions import apply_transition, load_mission, transition_events
from hub.services.notifications import stage_notification
from lifecycle.graph import TransitionGraph
from lifecycle.types import ChangeEvent, ChangeType, MissionStatus, Role, TransitionChannel, as_utc, utcnow

log = logging.getLogger("fieldops.offers")

PUBLISHABLE = frozenset({MissionStatus.DRAFT, MissionStatus.PUBLISHED})

OK = "OK"
ALREADY_TAKEN = "ALREADY_TAKEN"
EXPIRED = "EXPIRED"
NO_OFFER = "NO_OFFER"


def _is_stale(offer: MissionOffer, now: datetime) -> bool:
    return bool(offer.expired) or as_utc(offer.expires_at) <= now


def publish_mission_offers(
    db: Session,
    bus: ChangeBus,
    graph: TransitionGraph,
    identity: Identity,
    *,
    mission_id: str,
    ttl_minutes: int,
    include_employees: bool = False,
    now: Optional[datetime] = None,
) -> int:
    """
    Fan a mission out to every eligible recipient with expiry = now + ttl.

    A recipient already holding a pending offer gets it reissued rather than
    duplicated; recipients who refused are left alone. Returns the number of
    offers created or reissued.
    """
    if ttl_minutes <= 0:
        raise InvalidParams("ttl_minutes must be positive")

    now = now or utcnow()
    mission = load_mission(db, mission_id, lock=True)
    status = MissionStatus(mission.status)
    if status not in PUBLISHABLE or mission.assigned_user_id:
        raise NotPublishable(f"mission not publishable in status {status.value}")

    roles = [Role.SUBCONTRACTOR.value]
    if include_employees:
        roles.append(Role.EMPLOYEE.value)
    recipients = (
        db.query(Profile)
        .filter(Profile.role.in_(roles), Profile.active.is_(True))
        .order_by(Profile.id.asc())
        .all()
    )
    existing: Dict[str, MissionOffer] = {
        o.user_id: o for o in db.query(MissionOffer).filter(MissionOffer.mission_id == mission.id)
    }

    expires_at = now + timedelta(minutes=ttl_minutes)
    staged: List[tuple] = []
    for person in recipients:
        offer = existing.get(person.id)
        if offer is not None:
            if offer.refused_at is not None or offer.accepted_at is not None:
                continue
            before = row_dict(offer)
            offer.sent_at = now
            offer.expires_at = expires_at
            offer.expired = False
            staged.append((offer, before))
        else:
            offer = MissionOffer(
                mission_id=mission.id,
                user_id=person.id,
                sent_at=now,
                expires_at=expires_at,
                expired=False,
            )
            db.add(offer)
            staged.append((offer, None))

    transition = None
    if status == MissionStatus.DRAFT:
        transition = apply_transition(
            db,
            graph,
            mission,
            MissionStatus.PUBLISHED,
            actor_id=identity.user_id,
            via=TransitionChannel.AUTO,
            note="published",
            context={"ttl_minutes": ttl_minutes, "include_employees": include_employees},
            now=now,
        )

    db.commit()

    events: List[ChangeEvent] = []
    if transition is not None:
        entry, before = transition
        db.refresh(entry)
        db.refresh(mission)
        STATUS_TRANSITIONS.labels(to_status=entry.to_status, via=entry.via).inc()
        events.extend(transition_events(mission, before, entry))
    for offer, before in staged:
        db.refresh(offer)
        kind = ChangeType.INSERT if before is None else ChangeType.UPDATE
        events.append(change("mission_offers", kind, row_dict(offer), before))

    count = len(staged)
    OFFERS_ISSUED.inc(count)
    log.info(
        "mission %s published: %d offers ttl=%dm employees=%s",
        mission.id,
        count,
        ttl_minutes,
        include_employees,
    )
    bus.publish_all(events)
    return count


def accept_mission_offer(
    db: Session,
    bus: ChangeBus,
    graph: TransitionGraph,
    identity: Identity,
    *,
    mission_id: str,
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    mission = load_mission(db, mission_id, lock=True)
    offer = (
        db.query(MissionOffer)
        .filter(MissionOffer.mission_id == mission.id, MissionOffer.user_id == identity.user_id)
        .first()
    )

    if offer is None or offer.refused_at is not None:
        return _outcome(NO_OFFER, mission_id, identity)

    if mission.assigned_user_id or MissionStatus(mission.status) != MissionStatus.PUBLISHED:
        return _outcome(ALREADY_TAKEN, mission_id, identity)

    if _is_stale(offer, now):
        if not offer.expired:
            before = row_dict(offer)
            offer.expired = True
            db.commit()
            db.refresh(offer)
            bus.publish(change("mission_offers", ChangeType.UPDATE, row_dict(offer), before))
        return _outcome(EXPIRED, mission_id, identity)

    offer_before = row_dict(offer)
    try:
        entry, mission_before = apply_transition(
            db,
            graph,
            mission,
            MissionStatus.ACCEPTED,
            actor_id=identity.user_id,
            via=TransitionChannel.AUTO,
            note="offer accepted",
            context={"offer_id": offer.id},
            now=now,
            assign_to=identity.user_id,
        )
    except StatusConflict:
        # another recipient claimed it between our read and the write
        db.rollback()
        return _outcome(ALREADY_TAKEN, mission_id, identity)
    except IllegalTransition:
        db.rollback()
        raise

    offer.accepted_at = now

    notification = None
    if mission.created_by and mission.created_by != identity.user_id:
        notification = stage_notification(
            db,
            user_id=mission.created_by,
            title="Mission accepted",
            body=f"{mission.title} was accepted",
            kind="mission_accepted",
            mission_id=mission.id,
            now=now,
        )

    db.commit()
    for obj in (offer, mission, entry):
        db.refresh(obj)

    events = [change("mission_offers", ChangeType.UPDATE, row_dict(offer), offer_before)]
    events.extend(transition_events(mission, mission_before, entry))
    if notification is not None:
        db.refresh(notification)
        events.append(change("notifications", ChangeType.INSERT, row_dict(notification)))

    STATUS_TRANSITIONS.labels(to_status=entry.to_status, via=entry.via).inc()
    bus.publish_all(events)
    return _outcome(OK, mission_id, identity)


def refuse_mission_offer(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    *,
    mission_id: str,
    now: Optional[datetime] = None,
) -> str:
    now = now or utcnow()
    load_mission(db, mission_id)
    offer = (
        db.query(MissionOffer)
        .filter(MissionOffer.mission_id == mission_id, MissionOffer.user_id == identity.user_id)
        .first()
    )
    if offer is None or offer.accepted_at is not None or offer.refused_at is not None:
        return NO_OFFER

    before = row_dict(offer)
    offer.refused_at = now
    db.commit()
    db.refresh(offer)
    log.info("offer for mission %s refused by %s", mission_id, identity.user_id)
    bus.publish(change("mission_offers", ChangeType.UPDATE, row_dict(offer), before))
    return OK


def expire_stale_offers(db: Session, bus: ChangeBus, *, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    stale = (
        db.query(MissionOffer)
        .filter(
            MissionOffer.expired.is_(False),
            MissionOffer.accepted_at.is_(None),
            MissionOffer.refused_at.is_(None),
            MissionOffer.expires_at <= now,
        )
        .all()
    )
    staged = []
    for offer in stale:
        staged.append((offer, row_dict(offer)))
        offer.expired = True
    db.commit()

    for offer, before in staged:
        db.refresh(offer)
        bus.publish(change("mission_offers", ChangeType.UPDATE, row_dict(offer), before))
    if staged:
        log.info("expired %d stale offers", len(staged))
    return len(staged)


def _outcome(result: str, mission_id: str, identity: Identity) -> str:
    OFFER_ACCEPTANCE_RESULTS.labels(result=result).inc()
    log.info("accept mission %s by %s: %s", mission_id, identity.user_id, result)
    return result
