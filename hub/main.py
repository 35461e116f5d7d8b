from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.orm import Session

from hub.auth import Identity, require_identity
from hub.config import Settings, load_settings
from hub.db import get_db, init_db
from hub.db_models import Profile, row_dict
from hub.errors import HubError, hub_error_handler
from hub.logging_config import configure_logging
from hub.realtime import ChangeBus
from hub.realtime import router as realtime_router
from hub.rest import router as rest_router
from hub.rpc import router as rpc_router
from lifecycle.graph import TransitionGraph, parse_edges
from lifecycle.types import SCHEMA_VERSION, SCHEMA_VERSION_HEADER

log = logging.getLogger("fieldops.hub")


def _sanitize_db_url(db_url: str) -> str:
    try:
        u = urlparse(db_url)
        scheme = (u.scheme or "db").split("+", 1)[0]
        host = u.hostname or ""
        port = f":{u.port}" if u.port else ""
        dbname = (u.path or "").lstrip("/")
        if host or dbname:
            return f"{scheme}://{host}{port}/{dbname}"
        return f"{scheme}://(unresolved)"
    except ValueError:
        return "db_url:unparseable"


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    # Resolve ONCE. Never re-resolve later.
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            init_db()
            app.state.db_init_ok = True
            app.state.db_init_error = None
        except Exception as e:
            app.state.db_init_ok = False
            app.state.db_init_error = f"{type(e).__name__}: {e}"
            log.exception("DB init failed")
        yield

    app = FastAPI(title="fieldops-hub", version="0.1.0", lifespan=lifespan)

    # Freeze state at build time
    app.state.settings = settings
    app.state.service = settings.service
    app.state.env = settings.env
    app.state.app_instance_id = str(uuid.uuid4())
    app.state.db_init_ok = False
    app.state.db_init_error = None
    app.state.bus = ChangeBus()
    app.state.graph = TransitionGraph.default(parse_edges(settings.extra_transitions))

    @app.middleware("http")
    async def schema_version_header(request: Request, call_next):
        response = await call_next(request)
        response.headers[SCHEMA_VERSION_HEADER] = str(SCHEMA_VERSION)
        return response

    app.add_exception_handler(HubError, hub_error_handler)

    app.include_router(rpc_router)
    app.include_router(rest_router)
    app.include_router(realtime_router)

    @app.get("/health")
    async def health(request: Request) -> dict:
        return {
            "status": "ok",
            "service": request.app.state.service,
            "env": request.app.state.env,
            "schema_version": SCHEMA_VERSION,
            "app_instance_id": request.app.state.app_instance_id,
        }

    @app.get("/health/live")
    async def health_live() -> dict:
        return {"status": "live"}

    @app.get("/health/ready")
    def health_ready(db: Session = Depends(get_db)) -> dict:
        if not bool(app.state.db_init_ok):
            raise HTTPException(status_code=503, detail=f"db_init_failed: {app.state.db_init_error or 'unknown'}")
        try:
            db.execute(text("SELECT 1"))
        except Exception as e:
            log.exception("readiness query failed")
            raise HTTPException(status_code=503, detail=f"db_unreachable: {type(e).__name__}") from e
        return {"status": "ready", "db": _sanitize_db_url(settings.db_url)}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/auth/v1/user")
    def current_user(
        identity: Identity = Depends(require_identity),
        db: Session = Depends(get_db),
    ) -> Dict[str, Any]:
        profile = db.query(Profile).filter(Profile.id == identity.user_id).one()
        return {**row_dict(profile), "key_prefix": identity.key_prefix}

    @app.get("/lifecycle/v1/graph")
    async def lifecycle_graph(request: Request) -> dict:
        graph: TransitionGraph = request.app.state.graph
        return {"edges": [list(p) for p in graph.pairs()]}

    return app


app = build_app()
