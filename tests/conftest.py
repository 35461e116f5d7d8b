from __future__ import annotations

import os
from pathlib import Path

import pytest

# IMPORTANT: this runs at import time (before hub.db is imported by tests)
BASE = Path(os.getenv("PYTEST_TMP_BASE", "/tmp")) / "fieldops_pytest"
STATE = BASE / "state"
STATE.mkdir(parents=True, exist_ok=True)

os.environ.setdefault("FO_ENV", "test")
os.environ["FO_STATE_DIR"] = str(STATE)
os.environ["FO_DB_URL"] = f"sqlite:///{(STATE / 'fieldops.sqlite3').as_posix()}"
os.environ.pop("FO_EXTRA_TRANSITIONS", None)

from hub.db import reset_engine  # noqa: E402
from tests._harness import build_hub  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def hub(tmp_path: Path, monkeypatch):
    """A hub app on its own sqlite file, seeded with users and API keys."""
    monkeypatch.setenv("FO_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("FO_DB_URL", f"sqlite:///{(tmp_path / 'hub.sqlite3').as_posix()}")
    reset_engine()
    h = build_hub()
    with h.client:
        yield h
    reset_engine()
