from __future__ import annotations

import logging
from typing import Any, Callable, List

from fieldops.backend import BackendClient, eq, is_null, parse_rows
from fieldops.errors import InvalidInputError
from fieldops.realtime import RealtimeClient, Subscription
from lifecycle.types import ChangeEvent, Offer

log = logging.getLogger("fieldops.client")

DEFAULT_TTL_MINUTES = 30

# accept_mission_offer outcomes
OK = "OK"
ALREADY_TAKEN = "ALREADY_TAKEN"
EXPIRED = "EXPIRED"
NO_OFFER = "NO_OFFER"


def _mission_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError("mission_id is required")
    return value.strip()


def publish_mission(
    backend: BackendClient,
    mission_id: str,
    *,
    ttl_minutes: int = DEFAULT_TTL_MINUTES,
    include_employees: bool = False,
) -> int:
    """Offer the mission to every eligible recipient. Returns the number of offers sent."""
    mission_id = _mission_id(mission_id)
    if isinstance(ttl_minutes, bool) or not isinstance(ttl_minutes, int) or ttl_minutes <= 0:
        raise InvalidInputError("ttl_minutes must be a positive integer")

    count = backend.rpc(
        "publish_mission_offers",
        {
            "mission_id": mission_id,
            "ttl_minutes": ttl_minutes,
            "include_employees": bool(include_employees),
        },
    )
    log.info("mission %s published to %s recipients", mission_id, count)
    return int(count)


def accept_offer(backend: BackendClient, mission_id: str) -> str:
    """Returns OK when the mission is now yours, otherwise ALREADY_TAKEN, EXPIRED or NO_OFFER."""
    return str(backend.rpc("accept_mission_offer", {"mission_id": _mission_id(mission_id)}))


def refuse_offer(backend: BackendClient, mission_id: str) -> str:
    return str(backend.rpc("refuse_mission_offer", {"mission_id": _mission_id(mission_id)}))


def expire_stale_offers(backend: BackendClient) -> int:
    return int(backend.rpc("expire_stale_offers", {}))


def fetch_my_offers(backend: BackendClient) -> List[Offer]:
    me = backend.current_user()
    rows = backend.select(
        "mission_offers",
        filters={"user_id": eq(me.id), "accepted_at": is_null()},
        order="sent_at.desc,id.desc",
    )
    return parse_rows(Offer, rows)


def subscribe_my_offers(
    realtime: RealtimeClient,
    handler: Callable[[ChangeEvent], None],
    user_id: str,
) -> Subscription:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInputError("user_id is required")
    return realtime.subscribe("mission_offers", handler, filter=f"user_id={eq(user_id.strip())}")
