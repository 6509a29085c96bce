from datetime import datetime
from typing import Optional
import logging

from models import Event, Attendee, CATEGORIES
from database import Database
from queries import EventFilter, build_event_query
from exceptions import EventNotFound, AlreadyJoined, CapacityExceeded, InvalidEvent
from utils import parse_date, format_timestamp, new_id

logger = logging.getLogger(__name__)

class EventManager:
    def __init__(self, db: Database):
        """Initialize EventManager with database."""
        self.db = db

    def create_event(self, creator_id: str, name: str, description: str, date, time: str,
                     location: str, category: str, capacity: int, price: float = 0.0,
                     image: Optional[str] = None) -> Event:
        """Create an event; the creator becomes its first attendee."""
        if capacity <= 0:
            raise InvalidEvent("Capacity must be positive")
        if price < 0:
            raise InvalidEvent("Price cannot be negative")
        if category not in CATEGORIES:
            raise InvalidEvent(f"Category must be one of: {', '.join(CATEGORIES)}")
        if isinstance(date, str):
            date = parse_date(date)
        event_id = new_id()
        self.db.add_event({
            "id": event_id,
            "name": name,
            "description": description,
            "date": format_timestamp(date),
            "time": time,
            "location": location,
            "category": category,
            "capacity": capacity,
            "price": price,
            "image": image or None,
            "creator_id": creator_id,
        }, created_at=format_timestamp(datetime.now()))
        logger.info(f"Event {event_id} created by {creator_id}")
        return self.get_event(event_id)

    def get_event(self, event_id: str) -> Event | None:
        """Retrieve an event by ID with creator and attendees expanded."""
        event_data = self.db.get_event(event_id)
        if event_data is None:
            return None
        return self._populate([event_data])[0]

    def list_events(self, filters: EventFilter, now: Optional[datetime] = None) -> list[Event]:
        """Retrieve the events matching the filters, earliest first."""
        query = build_event_query(filters, now)
        return self._populate(self.db.find_events(query))

    def get_attendees(self, event_id: str) -> list[Attendee]:
        """Return the authoritative attendee list of an event."""
        if self.db.get_event(event_id) is None:
            raise EventNotFound()
        rows = self.db.list_attendees_for_events([event_id])[event_id]
        return [Attendee(**r) for r in rows]

    def _populate(self, rows: list[dict]) -> list[Event]:
        event_ids = [r["id"] for r in rows]
        attendees = self.db.list_attendees_for_events(event_ids)
        creators = self.db.get_users({r["creator_id"] for r in rows})
        events = []
        for r in rows:
            creator = creators.get(r["creator_id"])
            events.append(Event(
                id=r["id"],
                name=r["name"],
                description=r["description"],
                date=datetime.fromisoformat(r["date"]),
                time=r["time"],
                location=r["location"],
                category=r["category"],
                capacity=r["capacity"],
                price=r["price"],
                image=r["image"],
                creator=Attendee(**creator) if creator else None,
                attendees=[Attendee(**a) for a in attendees[r["id"]]],
                created_at=datetime.fromisoformat(r["created_at"]),
            ))
        return events

class AttendanceManager:
    def __init__(self, events: EventManager):
        """Guard joins with the capacity and duplicate invariants."""
        self.events = events
        self.db = events.db

    def join(self, event_id: str, user_id: str) -> Event:
        """Add a user to an event's attendees and return the updated event."""
        if not self.db.add_attendee_if_room(event_id, user_id):
            # Nothing was written; work out which guard rejected the join.
            event = self.db.get_event(event_id)
            if event is None:
                raise EventNotFound()
            if self.db.is_attending(event_id, user_id):
                raise AlreadyJoined()
            raise CapacityExceeded()
        logger.info(f"User {user_id} joined event {event_id}")
        return self.events.get_event(event_id)
