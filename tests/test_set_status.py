import httpx
import pytest

from fieldops.backend import BackendClient
from fieldops.config import ClientConfig
from fieldops.errors import InvalidInputError, NotAuthenticatedError, RemoteError
from fieldops.missions import fetch_status_timeline, set_mission_status, suggest_transitions
from lifecycle.graph import TransitionGraph
from lifecycle.types import MissionStatus, TransitionChannel


def _offline_backend() -> BackendClient:
    def _no_network(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected call to {request.url}")

    cfg = ClientConfig(backend_url="http://backend", api_key="FO_x", realtime_url="ws://backend")
    return BackendClient(cfg, http=httpx.Client(transport=httpx.MockTransport(_no_network)))


def test_every_legal_transition_appends_exactly_one_record(hub):
    admin = hub.backend("admin")
    graph = TransitionGraph.default()

    for src_label, dst_label in graph.pairs():
        src, dst = MissionStatus(src_label), MissionStatus(dst_label)
        m = hub.new_mission(title=f"{src.value}->{dst.value}")
        hub.force_status(m["id"], src)

        before = fetch_status_timeline(admin, m["id"])
        entry = set_mission_status(admin, m["id"], dst, note="walk")
        after = fetch_status_timeline(admin, m["id"])

        assert len(after) == len(before) + 1
        assert after[0].id == entry.id
        assert entry.from_status == src
        assert entry.to_status == dst
        assert entry.via == TransitionChannel.MANUAL
        assert entry.actor_id == hub.user_ids["admin"]
        assert entry.note == "walk"


def test_illegal_transitions_surface_the_backend_message(hub):
    admin = hub.backend("admin")
    graph = TransitionGraph.default()
    m = hub.new_mission()

    for src in MissionStatus:
        hub.force_status(m["id"], src)
        for dst in MissionStatus:
            if graph.allows(src, dst):
                continue
            with pytest.raises(RemoteError) as exc:
                set_mission_status(admin, m["id"], dst)
            assert exc.value.status_code == 409
            assert exc.value.code == "illegal_transition"
            assert exc.value.message == f"illegal transition {src.value} -> {dst.value}"

    assert fetch_status_timeline(admin, m["id"]) == []


def test_context_is_stored_with_the_record(hub):
    admin = hub.backend("admin")
    m = hub.new_mission()
    entry = set_mission_status(admin, m["id"], "PUBLISHED", context={"source": "board", "n": 2})
    assert entry.context == {"source": "board", "n": 2}


def test_unknown_mission_is_not_found(hub):
    with pytest.raises(RemoteError) as exc:
        set_mission_status(hub.backend("admin"), "nope", MissionStatus.PUBLISHED)
    assert exc.value.status_code == 404
    assert exc.value.message == "mission nope not found"


def test_subcontractor_moves_only_assigned_missions(hub):
    m = hub.new_mission()
    hub.force_status(m["id"], MissionStatus.ACCEPTED, assigned_to="sub1")

    with pytest.raises(RemoteError) as exc:
        set_mission_status(hub.backend("sub2"), m["id"], MissionStatus.PLANNED)
    assert exc.value.status_code == 403

    entry = set_mission_status(hub.backend("sub1"), m["id"], MissionStatus.PLANNED)
    assert entry.to_status == MissionStatus.PLANNED


def test_actor_must_be_the_caller(hub):
    m = hub.new_mission()
    r = hub.client.post(
        "/rpc/v1/mission_set_status",
        headers=hub.headers("dispatcher"),
        json={"mission_id": m["id"], "target_status": "PUBLISHED", "actor_id": hub.user_ids["admin"]},
    )
    assert r.status_code == 403
    assert r.json() == {"detail": "actor does not match the authenticated user", "code": "forbidden"}


def test_rpc_rejects_unknown_labels_and_parameters(hub):
    m = hub.new_mission()
    base = {"mission_id": m["id"], "actor_id": hub.user_ids["admin"]}

    r = hub.client.post(
        "/rpc/v1/mission_set_status",
        headers=hub.headers("admin"),
        json={**base, "target_status": "ON_HOLD"},
    )
    assert r.status_code == 422

    r = hub.client.post(
        "/rpc/v1/mission_set_status",
        headers=hub.headers("admin"),
        json={**base, "target_status": "PUBLISHED", "force": True},
    )
    assert r.status_code == 422


@pytest.mark.parametrize(
    "mission_id,target,kw",
    [
        ("", "PUBLISHED", {}),
        ("   ", "PUBLISHED", {}),
        (None, "PUBLISHED", {}),
        ("m1", "ON_HOLD", {}),
        ("m1", "", {}),
        ("m1", "PUBLISHED", {"context": ["not", "a", "dict"]}),
        ("m1", "PUBLISHED", {"note": 42}),
    ],
)
def test_presence_validation_happens_before_any_call(mission_id, target, kw):
    with pytest.raises(InvalidInputError):
        set_mission_status(_offline_backend(), mission_id, target, **kw)


def test_unauthenticated_callers_are_refused(hub):
    m = hub.new_mission()
    with pytest.raises(NotAuthenticatedError):
        set_mission_status(hub.backend(None), m["id"], "PUBLISHED")

    hub.keys["ghost"] = "GHOST_unknown"
    with pytest.raises(NotAuthenticatedError):
        set_mission_status(hub.backend("ghost"), m["id"], "PUBLISHED")

    assert fetch_status_timeline(hub.backend("admin"), m["id"]) == []


def test_suggestions_follow_the_graph(hub):
    m = hub.new_mission()
    admin = hub.backend("admin")

    s = suggest_transitions(MissionStatus.PLANNED)
    assert s.next_status == MissionStatus.EN_ROUTE
    assert s.side == [MissionStatus.ACCEPTED, MissionStatus.CANCELLED]

    assert suggest_transitions(MissionStatus.CLOSED).next_status is None

    entry = set_mission_status(admin, m["id"], suggest_transitions("DRAFT").next_status)
    assert entry.to_status == MissionStatus.PUBLISHED
