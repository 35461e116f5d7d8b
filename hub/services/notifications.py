from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from hub.auth import Identity
from hub.db_models import Notification, row_dict
from hub.errors import InvalidParams, NotFound
from hub.query import coerce
from hub.realtime import ChangeBus, change
from lifecycle.types import ChangeType, utcnow

log = logging.getLogger("fieldops.notifications")


def stage_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    body: Optional[str] = None,
    kind: str = "info",
    mission_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Notification:
    """Add a notification to the session; the caller commits and publishes."""
    n = Notification(
        user_id=user_id,
        title=title,
        body=body,
        kind=kind,
        mission_id=mission_id,
        created_at=now or utcnow(),
    )
    db.add(n)
    return n


def mark_notification_read(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    *,
    notification_id: int,
    now: Optional[datetime] = None,
) -> None:
    n = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == identity.user_id)
        .first()
    )
    if n is None:
        raise NotFound(f"notification {notification_id} not found")
    if n.read_at is not None:
        return

    before = row_dict(n)
    n.read_at = now or utcnow()
    db.commit()
    db.refresh(n)
    bus.publish(change("notifications", ChangeType.UPDATE, row_dict(n), before))


def mark_all_notifications_read(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    *,
    now: Optional[datetime] = None,
) -> int:
    now = now or utcnow()
    unread = (
        db.query(Notification)
        .filter(
            Notification.user_id == identity.user_id,
            Notification.read_at.is_(None),
            Notification.deleted_at.is_(None),
        )
        .all()
    )
    staged = []
    for n in unread:
        staged.append((n, row_dict(n)))
        n.read_at = now
    db.commit()

    for n, before in staged:
        db.refresh(n)
        bus.publish(change("notifications", ChangeType.UPDATE, row_dict(n), before))
    log.info("user %s marked %d notifications read", identity.user_id, len(staged))
    return len(staged)


# Recipients manage their own inbox through the table surface.
INBOX_FIELDS = frozenset({"read_at", "archived_at", "deleted_at"})


def update_notification(
    db: Session,
    bus: ChangeBus,
    identity: Identity,
    notification_id: int,
    values: Mapping[str, Any],
) -> Dict[str, Any]:
    unknown = set(values) - INBOX_FIELDS
    if unknown:
        raise InvalidParams(f"column(s) not writable on notifications: {', '.join(sorted(unknown))}")

    n = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == identity.user_id)
        .first()
    )
    if n is None:
        raise NotFound(f"notification {notification_id} not found")

    before = row_dict(n)
    for k, v in values.items():
        setattr(n, k, coerce(Notification, k, v))
    db.commit()
    db.refresh(n)

    row = row_dict(n)
    bus.publish(change("notifications", ChangeType.UPDATE, row, before))
    return row
