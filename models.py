from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

CATEGORIES = ("Conference", "Workshop", "Networking", "Concert", "Exhibition", "Sports")

@dataclass
class Attendee:
    """Expanded user reference: only the public fields of a user."""
    id: str
    name: str
    email: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}

@dataclass
class Event:
    id: str
    name: str
    description: str
    date: datetime
    time: str
    location: str
    category: str
    capacity: int
    price: float
    image: Optional[str] = None
    creator: Optional[Attendee] = None
    attendees: list[Attendee] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def spots_left(self) -> int:
        return max(self.capacity - len(self.attendees), 0)

    def is_attending(self, user_id: str) -> bool:
        return any(a.id == user_id for a in self.attendees)

    def to_dict(self) -> dict:
        """Return the JSON representation served by the API."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "date": self.date.isoformat(),
            "time": self.time,
            "location": self.location,
            "category": self.category,
            "capacity": self.capacity,
            "price": self.price,
            "image": self.image,
            "creator": self.creator.to_dict() if self.creator else None,
            "attendees": [a.to_dict() for a in self.attendees],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

@dataclass
class User:
    id: str
    name: str
    email: str
    password: str  # bcrypt hash

    def public(self) -> Attendee:
        return Attendee(self.id, self.name, self.email)
