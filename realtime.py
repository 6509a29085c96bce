import logging
from typing import Any, Callable

import socketio
from starlette.concurrency import run_in_threadpool

import config
from exceptions import EventNotFound
from manager import EventManager
from models import Attendee

logger = logging.getLogger(__name__)

ATTENDEE_UPDATE = "attendeeUpdate"


def create_socket_server() -> socketio.AsyncServer:
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=config.CORS_ORIGINS,
        logger=False,
        engineio_logger=False,
    )


def room_for_event(event_id: str) -> str:
    return f"event_{event_id}"


class EventBroadcaster:
    """Room-per-event fan-out of attendee lists."""

    def __init__(self, server: socketio.AsyncServer, events: Callable[[], EventManager]):
        self.server = server
        self.events = events
        server.on("connect", self.on_connect)
        server.on("disconnect", self.on_disconnect)
        server.on("joinEvent", self.on_join_event)
        server.on("attendeeJoined", self.on_attendee_joined)

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any | None = None):
        logger.info(f"User connected: {sid}")
        await self.server.save_session(sid, {"event_id": None})

    async def on_disconnect(self, sid: str, *args):
        # Rooms/session are cleaned up by the server.
        logger.info(f"User disconnected: {sid}")

    async def on_join_event(self, sid: str, event_id: Any):
        if not isinstance(event_id, str) or not event_id:
            logger.warning(f"Ignoring joinEvent from {sid} with bad id {event_id!r}")
            return
        session = await self.server.get_session(sid)
        previous = session.get("event_id") if isinstance(session, dict) else None
        if previous and previous != event_id:
            await self.server.leave_room(sid, room_for_event(previous))
        await self.server.enter_room(sid, room_for_event(event_id))
        await self.server.save_session(sid, {"event_id": event_id})
        logger.info(f"User {sid} joined event {event_id}")

    async def on_attendee_joined(self, sid: str, data: Any):
        event_id = data.get("eventId") if isinstance(data, dict) else None
        if not isinstance(event_id, str) or not event_id:
            logger.warning(f"Ignoring attendeeJoined from {sid} without eventId")
            return
        await self.publish_attendees(event_id, skip_sid=sid)

    async def publish_attendees(self, event_id: str, skip_sid: str | None = None) -> bool:
        """Send the stored attendee list to the event's room."""
        try:
            attendees = await run_in_threadpool(self.events().get_attendees, event_id)
        except EventNotFound:
            logger.warning(f"Not broadcasting attendees of unknown event {event_id}")
            return False
        await self.broadcast_attendees(event_id, attendees, skip_sid=skip_sid)
        return True

    async def broadcast_attendees(self, event_id: str, attendees: list[Attendee], skip_sid: str | None = None):
        payload = [a.to_dict() for a in attendees]
        await self.server.emit(ATTENDEE_UPDATE, payload, room=room_for_event(event_id), skip_sid=skip_sid)
