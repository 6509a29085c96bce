class EventHubError(Exception):
    """Base class for errors rendered as ``{"message": ...}`` responses."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class EventNotFound(EventHubError):
    status_code = 404
    message = "Event not found"


class ValidationConflict(EventHubError):
    status_code = 400
    message = "Invalid request"


class AlreadyJoined(ValidationConflict):
    message = "Already attending this event"


class CapacityExceeded(ValidationConflict):
    message = "Event is at full capacity"


class InvalidEvent(ValidationConflict):
    message = "Invalid event data"


class UploadError(ValidationConflict):
    message = "No image file provided"


class UpstreamFailure(EventHubError):
    """The asset host or the store failed; surfaced as a generic 500."""

    status_code = 500
    message = "Upstream service error"
