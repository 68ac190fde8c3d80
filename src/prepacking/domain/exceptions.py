"""Errors raised by the prepacking domain and service layer."""

from typing import Optional


class PrepackingError(Exception):
    """Base class for prepacking errors."""
    pass


class ValidationError(PrepackingError):
    """A business rule rejected the event."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFound(PrepackingError):
    """The event, or an entity it references, does not exist."""
    pass


class InvalidStatusTransition(PrepackingError):
    """The requested transition is not allowed from the event's current status."""
    pass
