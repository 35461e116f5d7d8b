"""
Thin synchronous client for the hosted backend: identity, remote procedures
and the table surface. No retries; every failure surfaces to the caller.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from fieldops.config import ClientConfig
from fieldops.errors import (
    NotAuthenticatedError,
    RemoteError,
    SchemaMismatchError,
    TransportError,
)
from lifecycle.types import SCHEMA_VERSION, SCHEMA_VERSION_HEADER, Profile

log = logging.getLogger("fieldops.client")

M = TypeVar("M", bound=BaseModel)

Filters = Union[Mapping[str, str], Sequence[Tuple[str, str]]]


def eq(value: Any) -> str:
    return f"eq.{_text(value)}"


def neq(value: Any) -> str:
    return f"neq.{_text(value)}"


def in_(values: Iterable[Any]) -> str:
    return "in.(" + ",".join(_text(v) for v in values) + ")"


def is_null() -> str:
    return "is.null"


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(getattr(value, "value", value))


def parse_rows(model: Type[M], rows: Iterable[Mapping[str, Any]]) -> List[M]:
    try:
        return [model.model_validate(r) for r in rows]
    except ValidationError as e:
        raise SchemaMismatchError(f"{model.__name__} rows do not match schema v{SCHEMA_VERSION}: {e}") from e


def parse_row(model: Type[M], row: Mapping[str, Any]) -> M:
    return parse_rows(model, [row])[0]


class BackendClient:
    def __init__(self, config: ClientConfig, http: Optional[httpx.Client] = None):
        self.config = config
        self._owns_http = http is None
        if http is None:
            timeout = httpx.Timeout(config.read_timeout_s, connect=config.connect_timeout_s)
            http = httpx.Client(base_url=config.backend_url, timeout=timeout)
        self._http = http

    def __enter__(self) -> "BackendClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def _headers(self) -> Dict[str, str]:
        if not self.config.api_key:
            raise NotAuthenticatedError("not authenticated: no API key configured")
        return {"X-API-Key": self.config.api_key}

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        json: Any = None,
    ) -> httpx.Response:
        headers = self._headers()
        try:
            r = self._http.request(method, path, params=params, json=json, headers=headers)
        except httpx.TransportError as e:
            log.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"{method} {path}: {e}") from e

        remote_version = r.headers.get(SCHEMA_VERSION_HEADER)
        if remote_version is None and r.status_code >= 500:
            # gateway or crash page from outside the backend's own handlers
            message = _error_body(r)[1]
            log.warning("%s %s failed upstream: HTTP %d %s", method, path, r.status_code, message)
            raise TransportError(f"{method} {path}: HTTP {r.status_code}: {message}")
        # header-less 4xx come from a proxy and are judged by status alone
        if remote_version is not None or r.status_code < 400:
            if remote_version != str(SCHEMA_VERSION):
                raise SchemaMismatchError(
                    f"backend speaks schema {remote_version or 'unknown'}, client expects {SCHEMA_VERSION}"
                )

        if r.status_code == 401:
            raise NotAuthenticatedError(_error_body(r)[1])
        if r.status_code >= 400:
            code, message = _error_body(r)
            raise RemoteError(r.status_code, code, message)
        return r

    def get_json(self, path: str) -> Any:
        return self._request("GET", path).json()

    def current_user(self) -> Profile:
        body = self.get_json("/auth/v1/user")
        body.pop("key_prefix", None)
        return parse_row(Profile, body)

    def rpc(self, procedure: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        r = self._request("POST", f"/rpc/v1/{procedure}", json=dict(params or {}))
        log.debug("rpc %s ok", procedure)
        return r.json()

    def select_page(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Rows plus the total match count before limit/offset."""
        items = list(filters.items()) if isinstance(filters, Mapping) else list(filters or [])
        if order:
            items.append(("order", order))
        if limit is not None:
            items.append(("limit", str(limit)))
        if offset:
            items.append(("offset", str(offset)))
        r = self._request("GET", f"/rest/v1/{table}", params=items)
        rows = r.json()
        return rows, int(r.headers.get("X-Total-Count", len(rows)))

    def select(self, table: str, **kw: Any) -> List[Dict[str, Any]]:
        rows, _ = self.select_page(table, **kw)
        return rows

    def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/rest/v1/{table}", json=dict(values)).json()

    def update(self, table: str, row_id: Any, values: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request(
            "PATCH", f"/rest/v1/{table}", params=[("id", eq(row_id))], json=dict(values)
        ).json()


def _error_body(r: httpx.Response) -> Tuple[Optional[str], str]:
    try:
        body = r.json()
    except ValueError:
        return None, r.text or f"HTTP {r.status_code}"
    if not isinstance(body, dict):
        return None, str(body)

    detail = body.get("detail", body)
    if isinstance(detail, list):
        # request validation: [{"loc": [...], "msg": "..."}]
        parts = []
        for item in detail:
            if isinstance(item, dict):
                loc = ".".join(str(p) for p in item.get("loc", []) if p != "body")
                parts.append(f"{loc}: {item.get('msg')}" if loc else str(item.get("msg")))
            else:
                parts.append(str(item))
        detail = "; ".join(parts)
        return body.get("code") or "invalid_params", detail
    return body.get("code"), str(detail)
