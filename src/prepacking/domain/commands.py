"""Commands for the prepacking service."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Command:
    """Base class for all commands."""
    pass


@dataclass
class Authentication:
    """
    Who is calling.

    A trusted machine client (client-credentials token) has no user of its own
    and asserts the acting user in the payload; a user session carries the
    user id.
    """
    client_only: bool
    user_id: Optional[str] = None
    client_id: Optional[str] = None


@dataclass
class SubmitPrepackingEvent(Command):
    """Command to record an intended split of bulk lots into prepacks."""
    facility_id: str
    program_id: str
    line_items: List[Dict[str, Any]]
    authentication: Authentication
    comments: Optional[str] = None
    prepacker_user_id: Optional[str] = None
    prepacker_user_names: Optional[str] = None


@dataclass
class AuthorizePrepackingEvent(Command):
    """Command to carry out the split recorded on a draft event."""
    event_id: str
    authentication: Authentication = field(
        default_factory=lambda: Authentication(client_only=True)
    )


@dataclass
class RejectPrepackingEvent(Command):
    event_id: str
    authentication: Authentication = field(
        default_factory=lambda: Authentication(client_only=True)
    )


@dataclass
class DeletePrepackingEvent(Command):
    event_id: str
