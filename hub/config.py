from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Keep settings boring: read env once per load_settings() call, no hidden caching.


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return int(v)


def _state_dir() -> Path:
    return Path(os.getenv("FO_STATE_DIR", "artifacts").strip() or "artifacts")


def _db_url(state_dir: Path) -> str:
    url = os.getenv("FO_DB_URL", "").strip()
    if url:
        return url
    return f"sqlite:///{(state_dir / 'fieldops.sqlite3').as_posix()}"


@dataclass(frozen=True)
class Settings:
    env: str
    service: str
    state_dir: Path
    db_url: str
    log_level: str

    default_offer_ttl_minutes: int

    # "FROM>TO,FROM>TO", added on top of the default transition graph
    extra_transitions: str

    @property
    def is_sqlite(self) -> bool:
        return self.db_url.startswith("sqlite")


def load_settings() -> Settings:
    state_dir = _state_dir()
    return Settings(
        env=os.getenv("FO_ENV", "dev").strip() or "dev",
        service=os.getenv("FO_SERVICE", "fieldops-hub").strip() or "fieldops-hub",
        state_dir=state_dir,
        db_url=_db_url(state_dir),
        log_level=os.getenv("FO_LOG_LEVEL", "INFO").strip().upper(),
        default_offer_ttl_minutes=_env_int("FO_DEFAULT_OFFER_TTL_MINUTES", 30),
        extra_transitions=os.getenv("FO_EXTRA_TRANSITIONS", "").strip(),
    )
