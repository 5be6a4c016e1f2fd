"""Domain errors raised by the scheduling core."""


class SchedulingError(Exception):
    """Base class for booking domain errors."""


class SlotUnavailable(SchedulingError):
    """The requested interval overlaps an active appointment."""

    def __init__(self, start, message: str = "requested slot is unavailable"):
        super().__init__(message)
        self.start = start


class NotFound(SchedulingError):
    """The appointment does not exist or does not belong to the business."""

    def __init__(self, appointment_id: str):
        super().__init__(f"appointment {appointment_id} not found")
        self.appointment_id = appointment_id


class MalformedDirective(SchedulingError):
    """A directive keyword was present but its payload cannot be executed."""

    def __init__(self, message: str, reason: str = "malformed"):
        super().__init__(message)
        self.reason = reason


class InvalidTransition(SchedulingError):
    """Attempted to move an appointment out of a terminal status."""


class CollaboratorUnavailable(Exception):
    """A storage, calendar, messaging or language-model call failed."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
