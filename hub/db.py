"""
Database handle for the hub.

One engine per process, built lazily from the current settings. Tests point
FO_DB_URL somewhere else and call reset_engine() to rebuild it.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from hub.config import Settings, load_settings
from hub.db_models import Base

# seconds a writer waits for another transaction's sqlite lock
SQLITE_BUSY_TIMEOUT_S = 15

_engine: Optional[Engine] = None
_sessions: Optional[sessionmaker] = None


def _connect_args(settings: Settings) -> dict:
    if not settings.is_sqlite:
        return {}
    if not settings.db_url.startswith("sqlite:///:memory:"):
        settings.state_dir.mkdir(parents=True, exist_ok=True)
    # request threads share the pool; competing writers queue on the lock
    return {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_S}


def _session_factory() -> sessionmaker:
    global _engine, _sessions
    if _sessions is None:
        settings = load_settings()
        _engine = create_engine(settings.db_url, pool_pre_ping=True, connect_args=_connect_args(settings))
        Base.metadata.create_all(bind=_engine)
        _sessions = sessionmaker(bind=_engine, autoflush=False)
    return _sessions


def init_db() -> None:
    _session_factory()


def reset_engine() -> None:
    """Drop the cached engine so the next session re-reads FO_DB_URL."""
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None


@contextmanager
def session_scope() -> Iterator[Session]:
    """A session for one unit of work. Callers commit; anything left open is rolled back."""
    db: Session = _session_factory()()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    with session_scope() as db:
        yield db
