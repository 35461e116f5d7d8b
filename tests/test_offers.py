import threading
from datetime import timedelta

import pytest

from fieldops.errors import InvalidInputError, RemoteError
from fieldops.missions import fetch_status_timeline, get_mission
from fieldops.notifications import fetch_my_notifications
from fieldops.offers import (
    ALREADY_TAKEN,
    EXPIRED,
    NO_OFFER,
    OK,
    accept_offer,
    expire_stale_offers,
    fetch_my_offers,
    publish_mission,
    refuse_offer,
)
from hub.db import session_scope
from hub.errors import StatusConflict
from hub.services import offers as offer_service
from hub.services.missions import apply_transition, load_mission
from lifecycle.types import MissionStatus, Offer, TransitionChannel, utcnow


def _offers(hub, mission_id):
    rows = hub.backend("admin").select("mission_offers", filters={"mission_id": f"eq.{mission_id}"})
    return [Offer.model_validate(r) for r in rows]


def test_publish_creates_one_offer_per_active_subcontractor(hub):
    m = hub.new_mission()
    count = publish_mission(hub.backend("admin"), m["id"])

    offers = _offers(hub, m["id"])
    assert count == 2 == len(offers)
    assert {o.user_id for o in offers} == {hub.user_ids["sub1"], hub.user_ids["sub2"]}
    for o in offers:
        assert o.expires_at == o.sent_at + timedelta(minutes=30)
        assert not o.expired

    timeline = fetch_status_timeline(hub.backend("admin"), m["id"])
    assert [(t.from_status, t.to_status, t.via) for t in timeline] == [
        (MissionStatus.DRAFT, MissionStatus.PUBLISHED, TransitionChannel.AUTO)
    ]


def test_publish_can_include_employees_and_custom_ttl(hub):
    m = hub.new_mission()
    count = publish_mission(hub.backend("admin"), m["id"], ttl_minutes=90, include_employees=True)

    offers = _offers(hub, m["id"])
    assert count == 3
    assert hub.user_ids["dispatcher"] in {o.user_id for o in offers}
    assert all(o.ttl == timedelta(minutes=90) for o in offers)


def test_republish_reissues_instead_of_duplicating(hub):
    admin = hub.backend("admin")
    m = hub.new_mission()
    publish_mission(admin, m["id"])
    first = {o.user_id: o for o in _offers(hub, m["id"])}

    assert refuse_offer(hub.backend("sub2"), m["id"]) == OK
    assert publish_mission(admin, m["id"], ttl_minutes=45) == 1

    offers = {o.user_id: o for o in _offers(hub, m["id"])}
    assert len(offers) == 2
    sub1 = offers[hub.user_ids["sub1"]]
    assert sub1.id == first[hub.user_ids["sub1"]].id
    assert sub1.ttl == timedelta(minutes=45)
    assert offers[hub.user_ids["sub2"]].refused_at is not None

    # still a single DRAFT -> PUBLISHED record
    assert len(fetch_status_timeline(admin, m["id"])) == 1


def test_only_one_acceptance_is_honoured(hub):
    m = hub.new_mission(price_subcontractor_cents=12000)
    publish_mission(hub.backend("admin"), m["id"])

    assert accept_offer(hub.backend("sub1"), m["id"]) == OK
    assert accept_offer(hub.backend("sub2"), m["id"]) == ALREADY_TAKEN
    assert accept_offer(hub.backend("sub1"), m["id"]) == ALREADY_TAKEN

    offers = _offers(hub, m["id"])
    assert len([o for o in offers if o.accepted_at is not None]) == 1

    mission = get_mission(hub.backend("admin"), m["id"])
    assert mission.status == MissionStatus.ACCEPTED
    assert mission.assigned_user_id == hub.user_ids["sub1"]
    assert mission.accepted_at is not None

    timeline = fetch_status_timeline(hub.backend("admin"), m["id"])
    assert timeline[0].to_status == MissionStatus.ACCEPTED
    assert timeline[0].via == TransitionChannel.AUTO
    assert timeline[0].actor_id == hub.user_ids["sub1"]

    inbox = fetch_my_notifications(hub.backend("admin"))
    assert [n.kind for n in inbox] == ["mission_accepted"]
    assert inbox[0].mission_id == m["id"]


def test_accepted_mission_is_no_longer_publishable(hub):
    m = hub.new_mission()
    publish_mission(hub.backend("admin"), m["id"])
    accept_offer(hub.backend("sub1"), m["id"])

    with pytest.raises(RemoteError) as exc:
        publish_mission(hub.backend("admin"), m["id"])
    assert exc.value.status_code == 409
    assert exc.value.message == "mission not publishable in status ACCEPTED"


def test_expired_offer_cannot_be_accepted(hub):
    m = hub.new_mission()
    with session_scope() as db:
        offer_service.publish_mission_offers(
            db,
            hub.bus,
            hub.graph,
            hub.identity("admin"),
            mission_id=m["id"],
            ttl_minutes=30,
            now=utcnow() - timedelta(hours=2),
        )

    assert accept_offer(hub.backend("sub1"), m["id"]) == EXPIRED
    mine = {o.user_id: o for o in _offers(hub, m["id"])}
    assert mine[hub.user_ids["sub1"]].expired is True
    assert mine[hub.user_ids["sub2"]].expired is False

    assert expire_stale_offers(hub.backend("admin")) == 1
    assert expire_stale_offers(hub.backend("admin")) == 0
    assert get_mission(hub.backend("admin"), m["id"]).status == MissionStatus.PUBLISHED


def test_refused_or_missing_offer_is_no_offer(hub):
    m = hub.new_mission()
    publish_mission(hub.backend("admin"), m["id"])

    assert refuse_offer(hub.backend("sub2"), m["id"]) == OK
    assert refuse_offer(hub.backend("sub2"), m["id"]) == NO_OFFER
    assert accept_offer(hub.backend("sub2"), m["id"]) == NO_OFFER
    assert accept_offer(hub.backend("dispatcher"), m["id"]) == NO_OFFER


def test_accept_unknown_mission_is_not_found(hub):
    with pytest.raises(RemoteError) as exc:
        accept_offer(hub.backend("sub1"), "missing")
    assert exc.value.status_code == 404


def test_fetch_my_offers_lists_only_pending_own_offers(hub):
    a = hub.new_mission(title="A")
    b = hub.new_mission(title="B")
    publish_mission(hub.backend("admin"), a["id"])
    publish_mission(hub.backend("admin"), b["id"])
    accept_offer(hub.backend("sub1"), a["id"])

    mine = fetch_my_offers(hub.backend("sub1"))
    assert [o.mission_id for o in mine] == [b["id"]]
    assert all(o.user_id == hub.user_ids["sub1"] for o in mine)


def test_publish_is_admin_only(hub):
    m = hub.new_mission()
    with pytest.raises(RemoteError) as exc:
        publish_mission(hub.backend("dispatcher"), m["id"])
    assert exc.value.status_code == 403
    assert exc.value.message == "admin only"


@pytest.mark.parametrize("ttl", [0, -5, 2.5, True, "30"])
def test_publish_rejects_bad_ttl_locally(hub, ttl):
    m = hub.new_mission()
    with pytest.raises(InvalidInputError):
        publish_mission(hub.backend("admin"), m["id"], ttl_minutes=ttl)
    assert _offers(hub, m["id"]) == []


def test_publish_rejects_bad_ttl_remotely(hub):
    m = hub.new_mission()
    r = hub.client.post(
        "/rpc/v1/publish_mission_offers",
        headers=hub.headers("admin"),
        json={"mission_id": m["id"], "ttl_minutes": 0},
    )
    assert r.status_code == 422
    assert r.json()["detail"] == "ttl_minutes must be positive"


def test_publish_default_ttl_comes_from_settings(hub):
    m = hub.new_mission()
    r = hub.client.post(
        "/rpc/v1/publish_mission_offers",
        headers=hub.headers("admin"),
        json={"mission_id": m["id"]},
    )
    assert r.status_code == 200, r.text
    assert r.json() == 2
    assert all(o.ttl == timedelta(minutes=30) for o in _offers(hub, m["id"]))


def test_concurrent_acceptances_have_one_winner(hub, monkeypatch):
    m = hub.new_mission()
    publish_mission(hub.backend("admin"), m["id"])

    both_read = threading.Barrier(2, timeout=5)
    claim = offer_service.apply_transition

    def claim_after_both_read(*args, **kwargs):
        both_read.wait()
        return claim(*args, **kwargs)

    monkeypatch.setattr(offer_service, "apply_transition", claim_after_both_read)

    results = {}

    def accept(user):
        with session_scope() as db:
            results[user] = offer_service.accept_mission_offer(
                db, hub.bus, hub.graph, hub.identity(user), mission_id=m["id"]
            )

    threads = [threading.Thread(target=accept, args=(user,)) for user in ("sub1", "sub2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert sorted(results.values()) == [ALREADY_TAKEN, OK]
    winner = next(user for user, result in results.items() if result == OK)

    accepted = [o for o in _offers(hub, m["id"]) if o.accepted_at is not None]
    assert [o.user_id for o in accepted] == [hub.user_ids[winner]]
    assert get_mission(hub.backend("admin"), m["id"]).assigned_user_id == hub.user_ids[winner]

    timeline = fetch_status_timeline(hub.backend("admin"), m["id"])
    assert [t.to_status for t in timeline] == [MissionStatus.ACCEPTED, MissionStatus.PUBLISHED]


def test_acceptance_loses_to_a_status_change_after_its_read(hub):
    m = hub.new_mission()
    publish_mission(hub.backend("admin"), m["id"])

    with session_scope() as db:
        stale = load_mission(db, m["id"])
        hub.force_status(m["id"], MissionStatus.CANCELLED)
        with pytest.raises(StatusConflict):
            apply_transition(
                db,
                hub.graph,
                stale,
                MissionStatus.ACCEPTED,
                actor_id=hub.user_ids["sub1"],
                via=TransitionChannel.AUTO,
                assign_to=hub.user_ids["sub1"],
            )
        db.rollback()

    assert get_mission(hub.backend("admin"), m["id"]).assigned_user_id is None
    timeline = fetch_status_timeline(hub.backend("admin"), m["id"])
    assert [t.to_status for t in timeline] == [MissionStatus.PUBLISHED]
