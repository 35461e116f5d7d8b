import pytest

from fieldops.backend import in_, is_null
from fieldops.chat import delete_message, fetch_messages, send_message
from fieldops.errors import InvalidInputError, RemoteError
from fieldops.missions import (
    create_mission,
    fetch_missions,
    fetch_user_mission_history,
    fetch_user_mission_stats,
    get_mission,
    update_mission,
)
from fieldops.notifications import (
    archive_notification,
    count_unread,
    fetch_my_notifications,
    mark_all_notifications_read,
    mark_notification_read,
)
from hub.db import session_scope
from hub.services.notifications import stage_notification
from lifecycle.types import MissionStatus


def _notify(hub, user, title, n=1):
    with session_scope() as db:
        for i in range(n):
            stage_notification(db, user_id=hub.user_ids[user], title=f"{title} {i}")
        db.commit()


def test_status_is_not_writable_through_the_table_surface(hub):
    m = hub.new_mission()

    r = hub.client.patch(
        "/rest/v1/missions",
        params={"id": f"eq.{m['id']}"},
        headers=hub.headers("admin"),
        json={"status": "CLOSED"},
    )
    assert r.status_code == 422
    assert r.json()["detail"] == "status is changed through mission_set_status"

    r = hub.client.post(
        "/rest/v1/missions",
        headers=hub.headers("admin"),
        json={"title": "x", "status": "PAID"},
    )
    assert r.status_code == 422

    with pytest.raises(RemoteError) as exc:
        update_mission(hub.backend("admin"), m["id"], {"status": "DONE"})
    assert exc.value.code == "invalid_params"

    assert get_mission(hub.backend("admin"), m["id"]).status == MissionStatus.DRAFT


def test_descriptive_updates_go_through(hub):
    admin = hub.backend("admin")
    m = create_mission(admin, {"title": "Chiller check", "city": "Nantes"})
    assert m.status == MissionStatus.DRAFT
    assert m.created_by == hub.user_ids["admin"]

    updated = update_mission(
        admin, m.id, {"city": "Rennes", "scheduled_start": "2026-06-01T07:30:00+02:00"}
    )
    assert updated.city == "Rennes"
    assert updated.scheduled_start.hour == 5
    assert updated.updated_at is not None


def test_only_admins_create_or_edit_missions(hub):
    with pytest.raises(RemoteError) as exc:
        create_mission(hub.backend("sub1"), {"title": "mine"})
    assert exc.value.status_code == 403

    m = hub.new_mission()
    with pytest.raises(RemoteError) as exc:
        update_mission(hub.backend("dispatcher"), m["id"], {"city": "Paris"})
    assert exc.value.status_code == 403

    with pytest.raises(InvalidInputError):
        create_mission(hub.backend("admin"), {"city": "Paris"})


def test_filters_order_and_total_count(hub):
    for i in range(5):
        hub.new_mission(title=f"m{i}", estimated_duration_min=30 * (i + 1))
    admin = hub.backend("admin")

    rows, total = admin.select_page(
        "missions",
        filters=[("estimated_duration_min", "gte.60")],
        order="estimated_duration_min.desc",
        limit=2,
    )
    assert total == 4
    assert [r["title"] for r in rows] == ["m4", "m3"]

    rows = admin.select("missions", filters={"title": in_(["m0", "m2"])}, order="title.asc")
    assert [r["title"] for r in rows] == ["m0", "m2"]

    assert len(admin.select("missions", filters={"assigned_user_id": is_null()})) == 5

    page = fetch_missions(admin, limit=2, offset=1)
    assert [m.title for m in page] == ["m3", "m2"]
    assert fetch_missions(admin, status="PUBLISHED") == []


@pytest.mark.parametrize(
    "params,detail",
    [
        ({"nope": "eq.1"}, "unknown column 'nope' on missions"),
        ({"title": "like.x"}, "bad filter on title: 'like.x'"),
        ({"estimated_duration_min": "eq.abc"}, "bad integer for estimated_duration_min: 'abc'"),
        ({"order": "title.sideways"}, "bad order direction 'sideways'"),
    ],
)
def test_bad_queries_are_rejected(hub, params, detail):
    r = hub.client.get("/rest/v1/missions", params=params, headers=hub.headers("admin"))
    assert r.status_code == 422
    assert r.json()["detail"] == detail


def test_unknown_table_is_not_found(hub):
    r = hub.client.get("/rest/v1/invoices", headers=hub.headers("admin"))
    assert r.status_code == 404


def test_offers_and_notifications_are_owner_scoped(hub):
    _notify(hub, "sub1", "hello", n=2)
    _notify(hub, "sub2", "other")

    r = hub.client.get("/rest/v1/notifications", headers=hub.headers("sub1"))
    assert r.status_code == 200
    assert r.headers["X-Total-Count"] == "2"
    assert {n["user_id"] for n in r.json()} == {hub.user_ids["sub1"]}

    r = hub.client.get(
        "/rest/v1/notifications",
        params={"user_id": f"eq.{hub.user_ids['sub2']}"},
        headers=hub.headers("sub1"),
    )
    assert r.json() == []

    r = hub.client.get("/rest/v1/notifications", headers=hub.headers("admin"))
    assert r.headers["X-Total-Count"] == "3"


def test_user_history_and_stats(hub):
    rows = [
        (MissionStatus.PLANNED, 5000),
        (MissionStatus.DONE, 10000),
        (MissionStatus.PAID, 20000),
        (MissionStatus.CANCELLED, 7000),
    ]
    for status, price in rows:
        m = hub.new_mission(price_subcontractor_cents=price)
        hub.force_status(m["id"], status, assigned_to="sub1")
    hub.new_mission()

    history = fetch_user_mission_history(hub.backend("sub1"), hub.user_ids["sub1"])
    assert len(history) == 4

    stats = fetch_user_mission_stats(hub.backend("sub1"), hub.user_ids["sub1"])
    assert stats.total == 4
    assert stats.active == 1
    assert stats.completed == 2
    assert stats.earnings_cents == 30000


def test_notification_inbox(hub):
    _notify(hub, "sub1", "job", n=3)
    sub1 = hub.backend("sub1")

    inbox = fetch_my_notifications(sub1)
    assert len(inbox) == 3
    assert count_unread(sub1) == 3

    mark_notification_read(sub1, inbox[0].id)
    assert count_unread(sub1) == 2
    assert len(fetch_my_notifications(sub1, unread_only=True)) == 2

    archived = archive_notification(sub1, inbox[1].id)
    assert archived.archived_at is not None

    assert mark_all_notifications_read(sub1) == 2
    assert count_unread(sub1) == 0
    assert mark_all_notifications_read(sub1) == 0


def test_notifications_of_others_are_not_found(hub):
    _notify(hub, "sub2", "private")
    theirs = fetch_my_notifications(hub.backend("sub2"))[0]

    with pytest.raises(RemoteError) as exc:
        mark_notification_read(hub.backend("sub1"), theirs.id)
    assert exc.value.status_code == 404

    with pytest.raises(RemoteError) as exc:
        archive_notification(hub.backend("sub1"), theirs.id)
    assert exc.value.status_code == 404


def test_chat_messages(hub):
    sub1, admin = hub.backend("sub1"), hub.backend("admin")
    first = send_message(sub1, "mission-42", "On my way")
    send_message(admin, "mission-42", "Thanks")
    send_message(admin, "other", "unrelated")

    msgs = fetch_messages(admin, "mission-42")
    assert [m.content for m in msgs] == ["On my way", "Thanks"]
    assert msgs[0].sender_id == hub.user_ids["sub1"]

    with pytest.raises(RemoteError) as exc:
        delete_message(admin, first.id)
    assert exc.value.status_code == 404

    gone = delete_message(sub1, first.id)
    assert gone.deleted_at is not None
    assert [m.content for m in fetch_messages(admin, "mission-42")] == ["Thanks"]

    with pytest.raises(InvalidInputError):
        send_message(sub1, "mission-42", "   ")


def test_read_only_tables_refuse_writes(hub):
    r = hub.client.post(
        "/rest/v1/mission_status_log",
        headers=hub.headers("admin"),
        json={"mission_id": "x", "to_status": "DONE"},
    )
    assert r.status_code == 403

    r = hub.client.patch(
        "/rest/v1/mission_offers",
        params={"id": "eq.1"},
        headers=hub.headers("admin"),
        json={"accepted_at": "2026-01-01T00:00:00Z"},
    )
    assert r.status_code == 403
