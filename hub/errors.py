from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from hub.metrics import RPC_ERRORS

log = logging.getLogger("fieldops.errors")


class HubError(Exception):
    status_code = 400
    code = "bad_request"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidParams(HubError):
    status_code = 422
    code = "invalid_params"


class Forbidden(HubError):
    status_code = 403
    code = "forbidden"


class NotFound(HubError):
    status_code = 404
    code = "not_found"


class IllegalTransition(HubError):
    status_code = 409
    code = "illegal_transition"


class NotPublishable(HubError):
    status_code = 409
    code = "not_publishable"


class StatusConflict(HubError):
    status_code = 409
    code = "status_conflict"


def _procedure(request: Request) -> str:
    path = request.url.path
    if path.startswith("/rpc/"):
        return path.rsplit("/", 1)[-1]
    return path


async def hub_error_handler(request: Request, exc: HubError) -> JSONResponse:
    RPC_ERRORS.labels(procedure=_procedure(request), code=exc.code).inc()
    log.info("rejected %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )
