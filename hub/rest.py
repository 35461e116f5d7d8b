"""
Table surface: filtered reads plus the few inserts and descriptive updates
the client is allowed to make directly.

Reads answer with a JSON list and an X-Total-Count header holding the match
count before limit/offset.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from hub.auth import Identity, require_identity
from hub.db import get_db
from hub.db_models import (
    ChatMessage,
    Mission,
    MissionOffer,
    MissionStatusLog,
    Notification,
    Profile,
    row_dict,
)
from hub.deps import get_bus
from hub.errors import Forbidden, InvalidParams, NotFound
from hub.query import RowFilter, apply_filter, apply_order, filters_from_params, parse_order
from hub.realtime import OWNER_COLUMNS, ChangeBus
from hub.services import chat, missions, notifications

router = APIRouter(prefix="/rest/v1", tags=["rest"])

TABLES: Dict[str, type] = {
    "profiles": Profile,
    "missions": Mission,
    "mission_status_log": MissionStatusLog,
    "mission_offers": MissionOffer,
    "notifications": Notification,
    "chat_messages": ChatMessage,
}

MAX_LIMIT = 1000


def _model(table: str) -> type:
    model = TABLES.get(table)
    if model is None:
        raise NotFound(f"unknown table {table!r}")
    return model


def _target_id(request: Request) -> str:
    raw = request.query_params.get("id")
    if not raw:
        raise InvalidParams("updates need an id=eq.<id> filter")
    f = RowFilter.parse("id", raw)
    if f.op != "eq":
        raise InvalidParams("updates need an id=eq.<id> filter")
    return f.values[0]


def _int_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidParams(f"bad id {raw!r}") from e


@router.get("/{table}")
def select_rows(
    table: str,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_identity),
    order: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=0, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
) -> List[Dict[str, Any]]:
    model = _model(table)
    q = db.query(model)
    for f in filters_from_params(request.query_params.multi_items()):
        q = apply_filter(q, model, f)

    owner_col = OWNER_COLUMNS.get(table)
    if owner_col and not identity.is_admin:
        q = q.filter(getattr(model, owner_col) == identity.user_id)

    response.headers["X-Total-Count"] = str(q.count())

    q = apply_order(q, model, parse_order(order))
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return [row_dict(r) for r in q.all()]


@router.post("/{table}", status_code=201)
def insert_row(
    table: str,
    values: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    identity: Identity = Depends(require_identity),
) -> Dict[str, Any]:
    _model(table)
    if table == "missions":
        if not identity.is_admin:
            raise Forbidden("only admins create missions")
        return missions.create_mission(db, bus, identity, values)
    if table == "chat_messages":
        return chat.send_message(db, bus, identity, values)
    raise Forbidden(f"{table} is read-only")


@router.patch("/{table}")
def update_row(
    table: str,
    request: Request,
    values: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    bus: ChangeBus = Depends(get_bus),
    identity: Identity = Depends(require_identity),
) -> Dict[str, Any]:
    _model(table)
    target = _target_id(request)
    if table == "missions":
        if not identity.is_admin:
            raise Forbidden("only admins edit missions")
        return missions.update_mission(db, bus, target, values)
    if table == "notifications":
        return notifications.update_notification(db, bus, identity, _int_id(target), values)
    if table == "chat_messages":
        return chat.update_message(db, bus, identity, _int_id(target), values)
    raise Forbidden(f"{table} is read-only")
