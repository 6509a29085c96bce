from datetime import datetime
import uuid

from exceptions import InvalidEvent

def parse_date(date_str: str) -> datetime:
    """Parse a date string into a naive local datetime."""
    try:
        value = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
    except ValueError:
        try:
            value = datetime.strptime(date_str, "%Y-%m-%d %H:%M")
        except ValueError:
            raise InvalidEvent("Invalid date format")
    return to_local_naive(value)

def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to local time and drop the tzinfo."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value

def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO format so stored timestamps compare as strings."""
    return to_local_naive(value).isoformat(timespec="milliseconds")

def new_id() -> str:
    return uuid.uuid4().hex
