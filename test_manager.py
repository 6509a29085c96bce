import pytest
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import config
import database
from manager import EventManager, AttendanceManager
from queries import EventFilter
from exceptions import EventNotFound, AlreadyJoined, CapacityExceeded, InvalidEvent

@pytest.fixture
def events(db):
    return EventManager(db)

@pytest.fixture
def attendance(events):
    return AttendanceManager(events)

def new_event(events, creator, **overrides):
    fields = {
        "name": "Python Workshop",
        "description": "Hands-on session",
        "date": "2025-05-01T10:00:00",
        "time": "10:00 AM",
        "location": "Room 101",
        "category": "Workshop",
        "capacity": 50,
        "price": 0,
    }
    fields.update(overrides)
    return events.create_event(creator_id=creator.id, **fields)

def test_creator_is_first_attendee(events, make_user):
    alice = make_user("Alice")
    event = new_event(events, alice)
    assert event.creator.id == alice.id
    assert [a.id for a in event.attendees] == [alice.id]
    assert event.attendees[0].to_dict() == {"id": alice.id, "name": "Alice", "email": "alice@example.com"}
    assert event.date == datetime(2025, 5, 1, 10, 0)

@pytest.mark.parametrize("overrides, message", [
    ({"capacity": 0}, "Capacity must be positive"),
    ({"price": -1}, "Price cannot be negative"),
    ({"date": "next tuesday"}, "Invalid date format"),
])
def test_invalid_event_fields(events, make_user, overrides, message):
    with pytest.raises(InvalidEvent) as exc:
        new_event(events, make_user("Alice"), **overrides)
    assert exc.value.message == message
    assert exc.value.status_code == 400

def test_unknown_category_rejected(events, make_user):
    with pytest.raises(InvalidEvent):
        new_event(events, make_user("Alice"), category="Picnic")

def test_get_missing_event(events):
    assert events.get_event("missing") is None

def test_join_until_full(events, attendance, make_user):
    a, b, c = make_user("A"), make_user("B"), make_user("C")
    event = new_event(events, a, capacity=2)

    updated = attendance.join(event.id, b.id)
    assert [x.id for x in updated.attendees] == [a.id, b.id]

    with pytest.raises(CapacityExceeded):
        attendance.join(event.id, c.id)
    with pytest.raises(AlreadyJoined):
        attendance.join(event.id, b.id)
    assert [x.id for x in events.get_event(event.id).attendees] == [a.id, b.id]

def test_creator_cannot_join_twice(events, attendance, make_user):
    a = make_user("A")
    event = new_event(events, a)
    with pytest.raises(AlreadyJoined):
        attendance.join(event.id, a.id)

def test_join_missing_event(attendance, make_user):
    with pytest.raises(EventNotFound):
        attendance.join("does-not-exist", make_user("A").id)

def test_concurrent_joins_respect_capacity(db, events, attendance, make_user):
    creator = make_user("Creator")
    event = new_event(events, creator, capacity=5)
    users = [make_user(f"User{i}") for i in range(20)]

    def try_join(user):
        try:
            attendance.join(event.id, user.id)
            return True
        except CapacityExceeded:
            return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(try_join, users))

    assert sum(results) == 4
    assert db.get_attendee_count(event.id) == 5
    ids = [a.id for a in events.get_event(event.id).attendees]
    assert len(ids) == len(set(ids)) == 5
    assert ids[0] == creator.id

def test_list_events_filters_and_order(events, make_user):
    a = make_user("A")
    now = datetime(2025, 5, 14, 12, 0)
    later = new_event(events, a, name="Evening Jazz", date=(now + timedelta(hours=6)).isoformat(), category="Concert")
    earlier = new_event(events, a, name="Morning Run", description="5k with JAZZ playing", date=(now - timedelta(hours=3)).isoformat(), category="Sports")
    new_event(events, a, name="Next Month Expo", date=(now + timedelta(days=40)).isoformat(), category="Exhibition")

    today = events.list_events(EventFilter(date="today"), now=now)
    assert [e.id for e in today] == [earlier.id, later.id]

    jazz = events.list_events(EventFilter(search="jazz"), now=now)
    assert {e.id for e in jazz} == {earlier.id, later.id}

    concerts = events.list_events(EventFilter(category="Concert"), now=now)
    assert [e.id for e in concerts] == [later.id]

    assert len(events.list_events(EventFilter(category="all", date="someday"), now=now)) == 3

def test_search_ignores_case_beyond_ascii(events, make_user):
    a = make_user("A")
    fete = new_event(events, a, name="Fête de la Musique", description=None)
    new_event(events, a, name="Street Food Market", description="Große Auswahl")

    assert [e.id for e in events.list_events(EventFilter(search="FÊTE"))] == [fete.id]
    assert len(events.list_events(EventFilter(search="GROSSE"))) == 1

def test_get_attendees(events, attendance, make_user):
    a, b = make_user("A"), make_user("B")
    event = new_event(events, a)
    attendance.join(event.id, b.id)
    assert [x.name for x in events.get_attendees(event.id)] == ["A", "B"]
    with pytest.raises(EventNotFound):
        events.get_attendees("missing")

def test_get_database_opens_one_instance(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "_database", None)
    monkeypatch.setattr(config, "DATABASE_PATH", str(tmp_path / "events.db"))
    barrier = threading.Barrier(8)

    def open_database(_):
        barrier.wait()
        return database.get_database()

    with ThreadPoolExecutor(max_workers=8) as pool:
        opened = list(pool.map(open_database, range(8)))

    assert len({id(db) for db in opened}) == 1
    assert opened[0].db_name == str(tmp_path / "events.db")
    opened[0].close()
