from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ClientConfig:
    backend_url: str
    api_key: Optional[str]
    realtime_url: str

    connect_timeout_s: float = 2.0
    read_timeout_s: float = 10.0


def realtime_url_for(backend_url: str) -> str:
    if backend_url.startswith("https://"):
        return "wss://" + backend_url[len("https://"):]
    if backend_url.startswith("http://"):
        return "ws://" + backend_url[len("http://"):]
    return backend_url


def load_config() -> ClientConfig:
    backend_url = (os.getenv("FO_BACKEND_URL") or "").strip().rstrip("/")
    if not backend_url:
        raise RuntimeError("FO_BACKEND_URL is required")

    api_key = (os.getenv("FO_API_KEY") or "").strip() or None
    realtime_url = (os.getenv("FO_REALTIME_URL") or "").strip().rstrip("/") or realtime_url_for(backend_url)

    return ClientConfig(
        backend_url=backend_url,
        api_key=api_key,
        realtime_url=realtime_url,
        connect_timeout_s=float(os.getenv("FO_CONNECT_TIMEOUT_SECONDS", "2")),
        read_timeout_s=float(os.getenv("FO_TIMEOUT_SECONDS", "10")),
    )
