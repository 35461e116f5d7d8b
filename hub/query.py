"""
Filter/order grammar shared by the table surface and the realtime channels.

    col=eq.value      col=neq.value     col=gt.value  (gte, lt, lte)
    col=in.(a,b,c)    col=is.null       col=is.true   col=is.false
    order=col.desc,other.asc
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Query

from hub.errors import InvalidParams
from lifecycle.types import as_utc

OPS = {"eq", "neq", "gt", "gte", "lt", "lte", "in", "is"}
RESERVED_PARAMS = {"order", "limit", "offset", "apikey"}


@dataclass(frozen=True)
class RowFilter:
    column: str
    op: str
    values: Tuple[str, ...]

    @classmethod
    def parse(cls, column: str, expr: str) -> "RowFilter":
        op, sep, raw = (expr or "").partition(".")
        if not sep or op not in OPS:
            raise InvalidParams(f"bad filter on {column}: {expr!r}")
        if op == "in":
            if not (raw.startswith("(") and raw.endswith(")")):
                raise InvalidParams(f"bad filter on {column}: in.(...) expected")
            values = tuple(v.strip() for v in raw[1:-1].split(",") if v.strip())
        elif op == "is":
            if raw not in ("null", "true", "false"):
                raise InvalidParams(f"bad filter on {column}: is.null|true|false expected")
            values = (raw,)
        else:
            values = (raw,)
        return cls(column=column, op=op, values=values)

    @classmethod
    def parse_channel(cls, text: str) -> "RowFilter":
        """Realtime form: "col=eq.value"."""
        column, sep, expr = (text or "").partition("=")
        if not sep or not column.strip():
            raise InvalidParams(f"bad channel filter {text!r}")
        f = cls.parse(column.strip(), expr.strip())
        if f.op not in ("eq", "neq", "in", "is"):
            raise InvalidParams(f"channel filters support eq, neq, in, is; got {f.op}")
        return f

    def matches(self, row: Optional[Mapping[str, Any]]) -> bool:
        if not row:
            return False
        v = row.get(self.column)
        if self.op == "is":
            want = {"null": None, "true": True, "false": False}[self.values[0]]
            return v is want or v == want
        text = "" if v is None else str(v)
        if self.op == "eq":
            return v is not None and text == self.values[0]
        if self.op == "neq":
            return text != self.values[0]
        if self.op == "in":
            return v is not None and text in self.values
        return False


@dataclass(frozen=True)
class OrderTerm:
    column: str
    descending: bool


def parse_order(expr: Optional[str]) -> List[OrderTerm]:
    terms: List[OrderTerm] = []
    for chunk in (expr or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        col, _, direction = chunk.partition(".")
        direction = (direction or "asc").lower()
        if direction not in ("asc", "desc"):
            raise InvalidParams(f"bad order direction {direction!r}")
        terms.append(OrderTerm(column=col, descending=direction == "desc"))
    return terms


def _column(model: type, name: str):
    cols = sa_inspect(model).columns
    if name not in cols:
        raise InvalidParams(f"unknown column {name!r} on {model.__tablename__}")
    return getattr(model, name)


def coerce(model: type, name: str, raw: Any) -> Any:
    """Convert a query-string or JSON value to the python type of the column."""
    col = sa_inspect(model).columns[name]
    if raw is None:
        return None
    try:
        py = col.type.python_type
    except NotImplementedError:
        return raw
    if py is bool:
        if isinstance(raw, bool):
            return raw
        s = str(raw).strip().lower()
        if s in ("true", "1"):
            return True
        if s in ("false", "0"):
            return False
        raise InvalidParams(f"bad boolean for {name}: {raw!r}")
    if py is int:
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise InvalidParams(f"bad integer for {name}: {raw!r}") from e
    if py is datetime:
        if isinstance(raw, datetime):
            return as_utc(raw)
        try:
            return as_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
        except ValueError as e:
            raise InvalidParams(f"bad timestamp for {name}: {raw!r}") from e
    return raw


def apply_filter(q: Query, model: type, f: RowFilter) -> Query:
    col = _column(model, f.column)
    if f.op == "is":
        want = {"null": None, "true": True, "false": False}[f.values[0]]
        return q.filter(col.is_(want))
    if f.op == "in":
        return q.filter(col.in_([coerce(model, f.column, v) for v in f.values]))

    v = coerce(model, f.column, f.values[0])
    if f.op == "eq":
        return q.filter(col == v)
    if f.op == "neq":
        return q.filter(col != v)
    if f.op == "gt":
        return q.filter(col > v)
    if f.op == "gte":
        return q.filter(col >= v)
    if f.op == "lt":
        return q.filter(col < v)
    return q.filter(col <= v)


def apply_order(q: Query, model: type, terms: Iterable[OrderTerm]) -> Query:
    terms = list(terms)
    if not terms:
        # stable default: primary key ascending
        pk = sa_inspect(model).primary_key[0]
        return q.order_by(pk.asc())
    for t in terms:
        col = _column(model, t.column)
        q = q.order_by(col.desc() if t.descending else col.asc())
    return q


def filters_from_params(items: Iterable[Tuple[str, str]]) -> List[RowFilter]:
    return [RowFilter.parse(k, v) for k, v in items if k not in RESERVED_PARAMS]
