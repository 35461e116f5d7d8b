from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .types import MissionStatus

S = MissionStatus

CANONICAL_ORDER: Tuple[MissionStatus, ...] = (
    S.DRAFT,
    S.PUBLISHED,
    S.ACCEPTED,
    S.PLANNED,
    S.EN_ROUTE,
    S.IN_PROGRESS,
    S.DONE,
    S.BILLABLE,
    S.BILLED,
    S.PAID,
    S.CLOSED,
)

TERMINAL: FrozenSet[MissionStatus] = frozenset({S.CLOSED, S.CANCELLED})

# Narrow backward moves; everything else backward is refused.
DEFAULT_ROLLBACKS: Tuple[Tuple[MissionStatus, MissionStatus], ...] = (
    (S.PLANNED, S.ACCEPTED),
    (S.IN_PROGRESS, S.PLANNED),
)

Edge = Tuple[MissionStatus, MissionStatus]


class TransitionError(ValueError):
    pass


def parse_edges(text: str) -> List[Edge]:
    """
    Parse "FROM>TO,FROM>TO" into edges.

    Blank input yields no edges. Unknown labels raise TransitionError.
    """
    edges: List[Edge] = []
    for chunk in (text or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        if ">" not in chunk:
            raise TransitionError(f"bad edge {chunk!r}: expected FROM>TO")
        src, dst = (p.strip().upper() for p in chunk.split(">", 1))
        try:
            edges.append((MissionStatus(src), MissionStatus(dst)))
        except ValueError as e:
            raise TransitionError(f"bad edge {chunk!r}: {e}") from e
    return edges


class TransitionGraph:
    """
    Directed graph of legal mission status changes.

    The hub enforces it; the client only reads it to suggest the next step.
    """

    def __init__(self, edges: Mapping[MissionStatus, Iterable[MissionStatus]]):
        self._edges: Dict[MissionStatus, FrozenSet[MissionStatus]] = {
            s: frozenset(edges.get(s, ())) for s in MissionStatus
        }
        for src in TERMINAL:
            if self._edges[src]:
                raise TransitionError(f"terminal status {src.value} cannot have outgoing edges")

    @classmethod
    def default(cls, extra: Iterable[Edge] = ()) -> "TransitionGraph":
        edges: Dict[MissionStatus, set] = {s: set() for s in MissionStatus}
        for src, dst in zip(CANONICAL_ORDER, CANONICAL_ORDER[1:]):
            edges[src].add(dst)
        for src in MissionStatus:
            if src not in TERMINAL:
                edges[src].add(S.CANCELLED)
        for src, dst in list(DEFAULT_ROLLBACKS) + list(extra):
            edges[src].add(dst)
        return cls(edges)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Iterable[str]]) -> "TransitionGraph":
        edges: Dict[MissionStatus, set] = {s: set() for s in MissionStatus}
        for src, dst in pairs:
            edges[MissionStatus(src)].add(MissionStatus(dst))
        return cls(edges)

    def allows(self, src: MissionStatus, dst: MissionStatus) -> bool:
        return MissionStatus(dst) in self._edges[MissionStatus(src)]

    def targets(self, src: MissionStatus) -> FrozenSet[MissionStatus]:
        return self._edges[MissionStatus(src)]

    def is_terminal(self, status: MissionStatus) -> bool:
        return MissionStatus(status) in TERMINAL

    def next_status(self, status: MissionStatus) -> Optional[MissionStatus]:
        """Canonical successor, if the graph still allows it."""
        status = MissionStatus(status)
        if status not in CANONICAL_ORDER:
            return None
        i = CANONICAL_ORDER.index(status)
        if i == len(CANONICAL_ORDER) - 1:
            return None
        nxt = CANONICAL_ORDER[i + 1]
        return nxt if self.allows(status, nxt) else None

    def side_transitions(self, status: MissionStatus) -> List[MissionStatus]:
        """Legal targets other than the canonical successor, cancellation last."""
        nxt = self.next_status(status)
        others = [t for t in self.targets(status) if t != nxt]
        return sorted(others, key=_display_rank)

    def pairs(self) -> List[Tuple[str, str]]:
        out = []
        for src in MissionStatus:
            for dst in sorted(self._edges[src], key=_display_rank):
                out.append((src.value, dst.value))
        return out

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransitionGraph):
            return NotImplemented
        return self._edges == other._edges

    def __repr__(self) -> str:
        return f"TransitionGraph({len(self.pairs())} edges)"


def _display_rank(s: MissionStatus) -> int:
    if s in CANONICAL_ORDER:
        return CANONICAL_ORDER.index(s)
    return len(CANONICAL_ORDER)


__all__ = [
    "CANONICAL_ORDER",
    "TERMINAL",
    "DEFAULT_ROLLBACKS",
    "TransitionError",
    "TransitionGraph",
    "parse_edges",
]
