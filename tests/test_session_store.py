from datetime import datetime, timedelta, timezone

import pytest

from plantsurveyor.errors import DuplicateOrigin, PersistenceFailure, UnknownOrigin
from plantsurveyor.geometry import Position
from plantsurveyor.models import Session, build_point
from plantsurveyor.session_controller import LivePoint
from plantsurveyor.session_store import SessionStore

T0 = datetime(2026, 4, 2, 9, 30, tzinfo=timezone.utc)


def _session(origin_id="PARCEL-12", name="Parcel 12", now=T0):
    return Session.new(origin_id, name, 45.75, 4.85, now=now)


def _points(count, origin=Position(0.1, 0.0, -0.2)):
    points = []
    previous = None
    for index in range(1, count + 1):
        world = Position(index * 1.37, 0.02 * index, -index * 0.61)
        point = build_point(index, f"Tree {index}", world, origin, previous=previous,
                            placed_at=T0 + timedelta(minutes=index))
        points.append(point)
        previous = LivePoint(point.id, point.name, world)
    return points


def test_create_and_load_round_trip(store):
    session = _session()
    store.create(session)

    loaded = store.get_by_origin_id("PARCEL-12")
    assert loaded == session
    assert loaded.created_at.tzinfo is not None


def test_missing_origin_returns_none(store):
    assert store.get_by_origin_id("nope") is None


def test_create_rejects_duplicate_origin(store):
    store.create(_session())
    with pytest.raises(DuplicateOrigin):
        store.create(_session(name="Someone else"))
    assert store.get_by_origin_id("PARCEL-12").display_name == "Parcel 12"
    assert store.count_sessions() == 1


def test_append_point_requires_existing_session(store):
    with pytest.raises(UnknownOrigin):
        store.append_point("ghost", _points(1)[0])
    assert store.count_points() == 0


def test_append_points_keeps_order_and_exact_values(store):
    store.create(_session())
    points = _points(4)
    for point in points:
        updated_at = store.append_point("PARCEL-12", point, updated_at=point.placed_at)
        assert updated_at == point.placed_at

    loaded = store.get_by_origin_id("PARCEL-12")
    assert list(loaded.points) == points
    assert loaded.updated_at == points[-1].placed_at
    assert store.count_points("PARCEL-12") == 4


def test_failed_append_leaves_session_untouched(store):
    store.create(_session())
    first = _points(1)[0]
    store.append_point("PARCEL-12", first, updated_at=first.placed_at)

    conn = store._get_connection()
    conn.execute("""
        CREATE TRIGGER fail_session_update BEFORE UPDATE ON sessions
        BEGIN
            SELECT RAISE(ABORT, 'disk full');
        END;
    """)
    conn.commit()

    second = _points(2)[1]
    with pytest.raises(PersistenceFailure):
        store.append_point("PARCEL-12", second)

    loaded = store.get_by_origin_id("PARCEL-12")
    assert [p.id for p in loaded.points] == [1]
    assert loaded.updated_at == first.placed_at
    assert store.count_points() == 1


def test_duplicate_point_number_is_rejected(store):
    store.create(_session())
    point = _points(1)[0]
    store.append_point("PARCEL-12", point)
    with pytest.raises(PersistenceFailure):
        store.append_point("PARCEL-12", point)
    assert store.count_points("PARCEL-12") == 1


def test_reload_is_idempotent(tmp_path, config):
    path = tmp_path / "reload.sqlite"
    first = SessionStore(path, config=config)
    first.create(_session())
    for point in _points(3):
        first.append_point("PARCEL-12", point, updated_at=point.placed_at)

    once = first.get_by_origin_id("PARCEL-12")
    twice = first.get_by_origin_id("PARCEL-12")
    first.close()

    reopened = SessionStore(path, config=config)
    try:
        assert once == twice == reopened.get_by_origin_id("PARCEL-12")
    finally:
        reopened.close()


def test_delete_session_cascades_to_points(store):
    store.create(_session())
    store.create(_session("PARCEL-13", "Parcel 13"))
    for point in _points(3):
        store.append_point("PARCEL-12", point)
    store.append_point("PARCEL-13", _points(1)[0])

    assert store.delete_session("PARCEL-12") is True
    assert store.get_by_origin_id("PARCEL-12") is None
    assert store.count_points("PARCEL-12") == 0
    assert store.count_points() == 1
    assert store.delete_session("PARCEL-12") is False


def test_list_sessions_most_recent_first(store):
    store.create(_session("A", "First", now=T0))
    store.create(_session("B", "Second", now=T0 + timedelta(hours=1)))
    assert [s.origin_id for s in store.list_sessions()] == ["B", "A"]

    store.append_point("A", _points(1)[0], updated_at=T0 + timedelta(hours=2))
    sessions = store.list_sessions()
    assert [s.origin_id for s in sessions] == ["A", "B"]
    assert sessions[0].point_count == 1


def test_statistics_and_delete_all(store):
    store.create(_session("A", "First"))
    store.create(_session("B", "Second"))
    for point in _points(2):
        store.append_point("A", point)

    stats = store.get_statistics()
    assert stats["total_sessions"] == 2
    assert stats["total_points"] == 2
    assert stats["points_per_session"] == {"A": 2, "B": 0}

    assert store.delete_all() == 2
    assert store.count_sessions() == 0
    assert store.count_points() == 0


def test_export_session(store):
    store.create(_session())
    store.append_point("PARCEL-12", _points(1)[0])

    exported = store.export_session("PARCEL-12")
    assert exported["origin_id"] == "PARCEL-12"
    assert exported["name"] == "Parcel 12"
    assert exported["point_count"] == 1
    assert exported["points"][0]["name"] == "Tree 1"
    assert exported["points"][0]["previous_point_id"] == 0

    with pytest.raises(UnknownOrigin):
        store.export_session("missing")


def test_in_memory_store(config):
    memory = SessionStore(":memory:", config=config)
    memory.create(_session())
    memory.append_point("PARCEL-12", _points(1)[0])
    assert memory.count_points() == 1
    memory.close()


def test_list_sessions_orders_mixed_offsets_by_instant(store):
    paris = timezone(timedelta(hours=2))
    # 11:30+02:00 is 09:30 UTC, earlier than 10:00 UTC despite sorting later as text
    store.create(_session("UTC", "Utc plot", now=datetime(2026, 4, 2, 10, 0, tzinfo=timezone.utc)))
    store.create(_session("LOCAL", "Local plot", now=datetime(2026, 4, 2, 11, 30, tzinfo=paris)))

    sessions = store.list_sessions()

    assert [s.origin_id for s in sessions] == ["UTC", "LOCAL"]
    assert sessions[1].updated_at == datetime(2026, 4, 2, 9, 30, tzinfo=timezone.utc)
    assert sessions[1].updated_at.utcoffset() == timedelta(0)
