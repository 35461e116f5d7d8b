from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, WebSocket
from starlette.concurrency import run_in_threadpool

from hub.auth import Identity, bearer_token, resolve_identity
from hub.db import session_scope
from hub.errors import HubError
from hub.metrics import REALTIME_DELIVERIES
from hub.query import RowFilter
from lifecycle.types import TABLE_MODELS, ChangeEvent, ChangeType, utcnow

log = logging.getLogger("fieldops.realtime")

# Non-admin subscribers only see their own rows on these tables.
OWNER_COLUMNS: Dict[str, str] = {
    "mission_offers": "user_id",
    "notifications": "user_id",
}

# Close codes sent before accept()
WS_UNAUTHORIZED = 4401
WS_BAD_REQUEST = 4400

EVENT_KINDS = {"*", "INSERT", "UPDATE", "DELETE"}


def change(
    table: str,
    kind: ChangeType,
    record: Optional[Dict[str, Any]] = None,
    old_record: Optional[Dict[str, Any]] = None,
) -> ChangeEvent:
    return ChangeEvent(
        table=table,
        type=kind,
        record=record,
        old_record=old_record,
        commit_timestamp=utcnow(),
    )


class BusSubscription:
    def __init__(
        self,
        bus: "ChangeBus",
        table: str,
        callback: Callable[[ChangeEvent], None],
        *,
        event: str = "*",
        row_filter: Optional[RowFilter] = None,
        owner_id: Optional[str] = None,
    ):
        self._bus = bus
        self.table = table
        self.callback = callback
        self.event = event
        self.row_filter = row_filter
        self.owner_id = owner_id

    def wants(self, ev: ChangeEvent) -> bool:
        if ev.table != self.table:
            return False
        if self.event != "*" and ev.type.value != self.event:
            return False
        row = ev.record if ev.record is not None else ev.old_record
        if self.owner_id is not None:
            owner_col = OWNER_COLUMNS.get(self.table)
            if owner_col and (row or {}).get(owner_col) != self.owner_id:
                return False
        if self.row_filter is not None and not self.row_filter.matches(row):
            return False
        return True

    def close(self) -> None:
        self._bus._remove(self)


class ChangeBus:
    """
    In-process fan-out of committed changes to realtime subscriptions.

    Publish is synchronous: when publish() returns, every matching callback
    has been invoked exactly once. No replay for late subscribers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: List[BusSubscription] = []

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        *,
        event: str = "*",
        row_filter: Optional[RowFilter] = None,
        owner_id: Optional[str] = None,
    ) -> BusSubscription:
        if table not in TABLE_MODELS:
            raise HubError(f"unknown table {table!r}")
        event = (event or "*").upper()
        if event not in EVENT_KINDS:
            raise HubError(f"unknown event {event!r}")
        sub = BusSubscription(
            self, table, callback, event=event, row_filter=row_filter, owner_id=owner_id
        )
        with self._lock:
            self._subs.append(sub)
        return sub

    def _remove(self, sub: BusSubscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def publish(self, ev: ChangeEvent) -> int:
        with self._lock:
            targets = [s for s in self._subs if s.wants(ev)]

        delivered = 0
        for sub in targets:
            try:
                sub.callback(ev)
                delivered += 1
            except Exception:
                log.exception("realtime delivery failed table=%s type=%s", ev.table, ev.type.value)
        if delivered:
            REALTIME_DELIVERIES.labels(table=ev.table, type=ev.type.value).inc(delivered)
        return delivered

    def publish_all(self, events: List[ChangeEvent]) -> None:
        for ev in events:
            self.publish(ev)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)


router = APIRouter(prefix="/realtime/v1", tags=["realtime"])


def _authenticate(raw_key: Optional[str]) -> Optional[Identity]:
    with session_scope() as db:
        return resolve_identity(db, raw_key)


@router.websocket("/{table}")
async def channel(
    websocket: WebSocket,
    table: str,
    event: str = "*",
    filter: Optional[str] = None,
    apikey: Optional[str] = None,
) -> None:
    raw_key = (
        websocket.headers.get("x-api-key")
        or bearer_token(websocket.headers.get("authorization"))
        or apikey
    )
    identity = await run_in_threadpool(_authenticate, raw_key)
    if identity is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    bus: ChangeBus = websocket.app.state.bus
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()

    def _enqueue(ev: ChangeEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, ev)

    try:
        row_filter = RowFilter.parse_channel(filter) if filter else None
        # Registered before accept(): once the client sees the channel open, no change is missed.
        sub = bus.subscribe(
            table,
            _enqueue,
            event=event,
            row_filter=row_filter,
            owner_id=None if identity.is_admin else identity.user_id,
        )
    except HubError as e:
        log.info("realtime channel refused table=%s: %s", table, e.message)
        await websocket.close(code=WS_BAD_REQUEST)
        return

    await websocket.accept()
    log.info("realtime channel open table=%s user=%s", table, identity.user_id)
    try:
        await _serve(websocket, queue)
    finally:
        sub.close()
        log.info("realtime channel closed table=%s user=%s", table, identity.user_id)


async def _serve(websocket: WebSocket, queue: "asyncio.Queue[ChangeEvent]") -> None:
    async def _pump() -> None:
        while True:
            ev = await queue.get()
            await websocket.send_text(ev.model_dump_json())

    async def _drain() -> None:
        # Client frames are ignored; we only watch for the disconnect.
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                return

    pump = asyncio.ensure_future(_pump())
    drain = asyncio.ensure_future(_drain())
    done, pending = await asyncio.wait({pump, drain}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    for task in done:
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is not None:
            log.info("realtime channel ended: %s: %s", type(exc).__name__, exc)
