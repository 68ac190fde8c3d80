"""Domain events for the prepacking service."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Event:
    """Base class for all domain events."""
    pass


@dataclass
class PrepackingEventSubmitted(Event):
    """Raised when a draft prepacking event has been validated and recorded."""
    event_id: str
    facility_id: str
    program_id: str
    line_item_count: int
    created_at: datetime


@dataclass
class PrepackingEventAuthorized(Event):
    """Raised once every line item of an event has been processed."""
    event_id: str
    facility_id: str
    program_id: str
    author_id: Optional[str]
    successful_line_items: int
    unsuccessful_line_items: int
    authorized_at: datetime


@dataclass
class PrepackingEventRejected(Event):
    event_id: str
    facility_id: str
    program_id: str
    author_id: Optional[str]
    rejected_at: datetime
