"""
Realtime change listeners.

Each subscription owns one WebSocket connection and one daemon thread that
reads frames and calls the handler, in arrival order. Handles are explicit:
nothing is registered globally, and a subscription lives until its owner
calls unsubscribe().
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus
from websockets.sync.client import connect as ws_connect

from fieldops.config import ClientConfig
from fieldops.errors import InvalidInputError, NotAuthenticatedError, RemoteError, TransportError
from lifecycle.types import TABLE_MODELS, ChangeEvent

log = logging.getLogger("fieldops.realtime")

Handler = Callable[[ChangeEvent], None]

EVENTS = ("*", "INSERT", "UPDATE", "DELETE")

JOIN_TIMEOUT_S = 5.0


class Subscription:
    def __init__(self, table: str, socket: Any, handler: Handler):
        self.table = table
        self._socket = socket
        self._handler = handler
        self._closed = threading.Event()
        # Held while the handler runs so unsubscribe() waits out an in-flight call.
        self._lock = threading.RLock()
        self._thread = threading.Thread(target=self._run, name=f"fieldops-rt-{table}", daemon=True)
        self._thread.start()

    @property
    def active(self) -> bool:
        return not self._closed.is_set() and self._thread.is_alive()

    def _run(self) -> None:
        while not self._closed.is_set():
            try:
                raw = self._socket.recv()
            except ConnectionClosed as e:
                if not self._closed.is_set():
                    log.warning("realtime channel %s closed by remote: %s", self.table, e)
                return
            except OSError as e:
                if not self._closed.is_set():
                    log.warning("realtime channel %s failed: %s", self.table, e)
                return

            try:
                ev = ChangeEvent.model_validate_json(raw)
            except ValidationError as e:
                log.warning("realtime channel %s: dropping malformed frame: %s", self.table, e)
                continue

            with self._lock:
                if self._closed.is_set():
                    return
                try:
                    self._handler(ev)
                except Exception:
                    log.exception("realtime handler failed table=%s type=%s", ev.table, ev.type.value)

    def unsubscribe(self) -> None:
        """Stop delivery. Once this returns the handler is never called again."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
        try:
            self._socket.close()
        except OSError as e:
            log.debug("realtime channel %s close: %s", self.table, e)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=JOIN_TIMEOUT_S)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class RealtimeClient:
    def __init__(
        self,
        config: ClientConfig,
        connect: Optional[Callable[..., Any]] = None,
        http: Optional[httpx.Client] = None,
    ):
        self.config = config
        self._connect = connect or ws_connect
        self._http = http

    def channel_url(self, table: str, *, event: str = "*", filter: Optional[str] = None) -> str:
        query = {"event": event}
        if filter:
            query["filter"] = filter
        return f"{self.config.realtime_url}/realtime/v1/{table}?{urlencode(query)}"

    def _key_rejected(self) -> bool:
        """
        Ask the backend whether it still accepts our key.

        A refused channel handshake does not say why; the identity endpoint
        does. When that check itself fails the answer is "not known", i.e. False.
        """
        headers = {"X-API-Key": self.config.api_key}
        try:
            if self._http is not None:
                r = self._http.get("/auth/v1/user", headers=headers)
            else:
                timeout = httpx.Timeout(self.config.read_timeout_s, connect=self.config.connect_timeout_s)
                with httpx.Client(base_url=self.config.backend_url, timeout=timeout) as http:
                    r = http.get("/auth/v1/user", headers=headers)
        except httpx.TransportError as e:
            log.warning("key check after channel refusal failed: %s", e)
            return False
        return r.status_code == 401

    def subscribe(
        self,
        table: str,
        handler: Handler,
        *,
        event: str = "*",
        filter: Optional[str] = None,
    ) -> Subscription:
        if table not in TABLE_MODELS:
            raise InvalidInputError(f"unknown table {table!r}")
        event = (event or "*").upper()
        if event not in EVENTS:
            raise InvalidInputError(f"unknown event {event!r}")
        if not callable(handler):
            raise InvalidInputError("handler must be callable")
        if not self.config.api_key:
            raise NotAuthenticatedError("not authenticated: no API key configured")

        url = self.channel_url(table, event=event, filter=filter)
        try:
            socket = self._connect(
                url,
                additional_headers={"X-API-Key": self.config.api_key},
                open_timeout=self.config.connect_timeout_s,
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status == 401 or self._key_rejected():
                raise NotAuthenticatedError(f"realtime channel {table}: API key rejected") from e
            raise RemoteError(status, "channel_refused", f"realtime channel {table} refused") from e
        except (InvalidHandshake, OSError) as e:
            raise TransportError(f"realtime channel {table}: {e}") from e

        log.info("realtime channel open table=%s event=%s filter=%s", table, event, filter)
        return Subscription(table, socket, handler)
