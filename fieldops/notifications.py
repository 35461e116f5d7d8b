from __future__ import annotations

from typing import Callable, List

from fieldops.backend import BackendClient, eq, is_null, parse_row, parse_rows
from fieldops.errors import InvalidInputError
from fieldops.realtime import RealtimeClient, Subscription
from lifecycle.types import ChangeEvent, Notification, utcnow


def _inbox_filters(backend: BackendClient, unread_only: bool) -> List[tuple]:
    me = backend.current_user()
    filters = [("user_id", eq(me.id)), ("deleted_at", is_null())]
    if unread_only:
        filters.append(("read_at", is_null()))
    return filters


def fetch_my_notifications(
    backend: BackendClient, *, limit: int = 50, unread_only: bool = False
) -> List[Notification]:
    rows = backend.select(
        "notifications",
        filters=_inbox_filters(backend, unread_only),
        order="created_at.desc,id.desc",
        limit=limit,
    )
    return parse_rows(Notification, rows)


def count_unread(backend: BackendClient) -> int:
    _, total = backend.select_page("notifications", filters=_inbox_filters(backend, True), limit=0)
    return total


def mark_notification_read(backend: BackendClient, notification_id: int) -> None:
    backend.rpc("mark_notification_read", {"notification_id": int(notification_id)})


def mark_all_notifications_read(backend: BackendClient) -> int:
    return int(backend.rpc("mark_all_notifications_read", {}))


def archive_notification(backend: BackendClient, notification_id: int) -> Notification:
    row = backend.update(
        "notifications", int(notification_id), {"archived_at": utcnow().isoformat()}
    )
    return parse_row(Notification, row)


def subscribe_notifications(
    realtime: RealtimeClient,
    handler: Callable[[ChangeEvent], None],
    user_id: str,
) -> Subscription:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInputError("user_id is required")
    return realtime.subscribe("notifications", handler, filter=f"user_id={eq(user_id.strip())}")
