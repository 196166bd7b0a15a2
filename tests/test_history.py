import sqlite3

import pytest

from wanderer.history import HistoryDB
from wanderer.models import COMPLETED, PAUSED, Location, WalkMoment, WalkSession

T0 = 1_700_000_000.0


@pytest.fixture()
def db():
    history = HistoryDB(":memory:")
    yield history
    history.close()


def make_session(user_id="user-1", title="Morning loop", start=T0):
    return WalkSession(
        user_id=user_id,
        title=title,
        start_time=start,
        route_path=[Location(lat=51.5, lng=-0.12)],
        planned_route=(Location(lat=51.5, lng=-0.12), Location(lat=51.505, lng=-0.12)),
    )


def test_insert_and_get_session(db):
    session_id = db.insert_session(make_session())
    walk = db.get_session(session_id)

    assert walk["user_id"] == "user-1"
    assert walk["title"] == "Morning loop"
    assert walk["status"] == "active"
    assert walk["end_time"] is None
    assert walk["route_path"] == [{"lat": 51.5, "lng": -0.12}]
    assert len(walk["planned_route"]) == 2


def test_get_missing_session(db):
    assert db.get_session(999) is None


def test_update_status(db):
    session_id = db.insert_session(make_session())
    db.update_session_status(session_id, PAUSED)
    assert db.get_session(session_id)["status"] == PAUSED


def test_finalize_session_writes_totals_and_trail(db):
    session_id = db.insert_session(make_session())
    trail = [Location(lat=51.5, lng=-0.12), Location(lat=51.501, lng=-0.12)]
    db.finalize_session(session_id, T0 + 900, 111.2, 900, trail)

    walk = db.get_session(session_id)
    assert walk["status"] == COMPLETED
    assert walk["total_distance"] == pytest.approx(111.2)
    assert walk["total_duration"] == 900
    assert walk["end_time"] is not None
    assert walk["route_path"] == [{"lat": 51.5, "lng": -0.12}, {"lat": 51.501, "lng": -0.12}]


def test_finalize_unknown_session_raises(db):
    with pytest.raises(sqlite3.IntegrityError):
        db.finalize_session(42, T0, 0, 0, [])


def test_moments_are_stored_once(db):
    session_id = db.insert_session(make_session())
    here = Location(lat=51.5, lng=-0.12)
    moments = [
        WalkMoment.create(here, T0 + 60, description="Heron"),
        WalkMoment.create(here, T0 + 120, photo_ref="photos/2.jpg"),
    ]
    db.insert_moments(session_id, moments)
    db.insert_moments(session_id, moments)  # retry after a partial failure

    stored = db.get_moments(session_id)
    assert [m["id"] for m in stored] == [m.id for m in moments]
    assert stored[0]["description"] == "Heron"
    assert stored[1]["photo_ref"] == "photos/2.jpg"


def test_moments_need_an_existing_walk(db):
    moment = WalkMoment.create(Location(lat=0, lng=0), T0)
    with pytest.raises(sqlite3.IntegrityError):
        db.insert_moments(123, [moment])


def test_list_sessions_newest_first_and_by_user(db):
    first = db.insert_session(make_session(title="First", start=T0))
    second = db.insert_session(make_session(title="Second", start=T0 + 86400))
    db.insert_session(make_session(user_id="user-2", title="Other", start=T0 + 3600))

    assert [w["id"] for w in db.list_sessions(user_id="user-1")] == [second, first]
    assert len(db.list_sessions()) == 3
    assert len(db.list_sessions(limit=1)) == 1


def test_stats_count_completed_walks(db):
    a = db.insert_session(make_session())
    b = db.insert_session(make_session(start=T0 + 7200))
    db.insert_session(make_session(start=T0 + 9000))  # never finished
    db.insert_session(make_session(user_id="user-2"))
    db.finalize_session(a, T0 + 1800, 2500, 1800, [])
    db.finalize_session(b, T0 + 9000, 1500, 1200, [])
    db.insert_moments(a, [WalkMoment.create(Location(lat=0, lng=0), T0 + 10)])

    stats = db.get_stats(user_id="user-1")
    assert stats == {
        "total_walks": 2,
        "total_distance_km": pytest.approx(4.0),
        "total_duration_minutes": pytest.approx(50.0),
        "total_moments": 1,
    }


def test_stats_empty(db):
    assert db.get_stats() == {
        "total_walks": 0,
        "total_distance_km": 0,
        "total_duration_minutes": 0,
        "total_moments": 0,
    }


def test_delete_session_cascades_to_moments(db):
    session_id = db.insert_session(make_session())
    db.insert_moments(session_id, [WalkMoment.create(Location(lat=0, lng=0), T0)])
    db.delete_session(session_id)
    assert db.get_session(session_id) is None
    assert db.get_moments(session_id) == []
