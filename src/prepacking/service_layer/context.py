"""
Per-request bundle of externally fetched facts.

Before processing an event, everything the validators and the authorization
workflow need from other services is registered here, so each fact is fetched
at most once per request no matter how often it is read.
"""

import logging
from typing import Any, Callable, Dict, Optional

from prepacking.adapters.referencedata import AbstractReferenceDataClient
from prepacking.domain.commands import Authentication
from prepacking.domain.exceptions import NotFound
from prepacking.domain.model import PrepackingEvent

logger = logging.getLogger(__name__)

CURRENT_USER = "current_user"
CURRENT_USER_ID = "current_user_id"
CURRENT_USER_NAMES = "current_user_names"
FACILITY = "facility"
PROGRAM = "program"


class ProcessContext:
    """Compute-once cache keyed by field name."""

    def __init__(self):
        self._suppliers: Dict[str, Callable[[], Any]] = {}
        self._values: Dict[str, Any] = {}

    def register(self, key: str, supplier: Callable[[], Any]) -> None:
        self._suppliers[key] = supplier
        self._values.pop(key, None)

    def is_registered(self, key: str) -> bool:
        return key in self._suppliers

    def is_loaded(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str) -> Any:
        if key not in self._values:
            if key not in self._suppliers:
                raise KeyError(f"Nothing registered for context value {key!r}")
            logger.debug(f"Loading context value {key}")
            self._values[key] = self._suppliers[key]()
        return self._values[key]

    @property
    def current_user_id(self) -> Optional[str]:
        return self.get(CURRENT_USER_ID)

    @property
    def current_user_names(self) -> Optional[str]:
        return self.get(CURRENT_USER_NAMES)

    @property
    def facility(self) -> Dict[str, Any]:
        return self.get(FACILITY)

    @property
    def facility_type(self) -> Optional[Dict[str, Any]]:
        return self.facility.get("type")

    @property
    def program(self) -> Dict[str, Any]:
        return self.get(PROGRAM)


class ProcessContextBuilder:

    def __init__(self, reference_data: AbstractReferenceDataClient):
        self.reference_data = reference_data

    def build_context(self, draft: PrepackingEvent, authentication: Authentication) -> ProcessContext:
        """
        Register lazy lookups for everything the request will need.

        A trusted client asserts in the draft who performed the action; for a
        user session the acting user comes from the authentication. The draft
        itself is only read.
        """
        logger.info(f"Building process context for prepacking event {draft.id}")
        context = ProcessContext()

        if authentication.client_only:
            user_id = draft.prepacker_user_id
            user_names = draft.prepacker_user_names
            context.register(CURRENT_USER_ID, lambda: user_id)
            context.register(CURRENT_USER_NAMES, lambda: user_names)
        else:
            session_user_id = authentication.user_id
            context.register(CURRENT_USER, lambda: self._fetch_user(session_user_id))
            context.register(CURRENT_USER_ID, lambda: session_user_id)
            context.register(
                CURRENT_USER_NAMES,
                lambda: _display_name(context.get(CURRENT_USER)),
            )

        facility_id = draft.facility_id
        program_id = draft.program_id
        context.register(FACILITY, lambda: self._fetch_facility(facility_id))
        context.register(PROGRAM, lambda: self._fetch_program(program_id))
        return context

    def _fetch_user(self, user_id: str) -> Dict[str, Any]:
        user = self.reference_data.find_user(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def _fetch_facility(self, facility_id: str) -> Dict[str, Any]:
        facility = self.reference_data.find_facility(facility_id)
        if facility is None:
            raise NotFound(f"Facility {facility_id} not found")
        return facility

    def _fetch_program(self, program_id: str) -> Dict[str, Any]:
        program = self.reference_data.find_program(program_id)
        if program is None:
            raise NotFound(f"Program {program_id} not found")
        return program


def _display_name(user: Dict[str, Any]) -> str:
    return f"{user.get('firstName')}, {user.get('lastName')}"
