import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from prepacking.domain.events import (
    PrepackingEventAuthorized,
    PrepackingEventRejected,
    PrepackingEventSubmitted,
)
from prepacking.domain.exceptions import InvalidStatusTransition

SUCCESSFUL = "Successful"
INADEQUATE_STOCK = "Unsuccessful - inadequate stock"
ORDERABLE_DOES_NOT_EXIST = "Unsuccessful - orderable does not exist"


class PrepackingEventStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    AUTHORIZED = "AUTHORIZED"
    REJECTED = "REJECTED"


def prepack_product_code(bulk_code: str, prepack_size: int) -> str:
    return f"{bulk_code}-{prepack_size}"


def prepack_product_name(bulk_name: str, prepack_size: int) -> str:
    return f"{bulk_name}-{prepack_size}"


def prepack_lot_code(bulk_lot_code: str, prepack_size: int) -> str:
    return f"{bulk_lot_code}-{prepack_size}"


@dataclass(frozen=True)
class DerivedIdentity:
    """The prepack orderable and child lot a bulk product/lot/size splits into."""
    orderable: Dict[str, Any]
    lot: Dict[str, Any]

    @property
    def orderable_id(self) -> str:
        return self.orderable["id"]

    @property
    def lot_id(self) -> str:
        return self.lot["id"]


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class PrepackingEventLineItem:
    orderable_id: str
    lot_id: str
    prepack_size: int
    number_of_prepacks: int
    remarks: Optional[str] = None
    stock_on_hand: Optional[int] = None
    extra_data: Dict[str, Any] = field(default_factory=dict)
    position: int = 0
    id: str = field(default_factory=_new_id)

    @property
    def quantity_to_prepack(self) -> int:
        return self.prepack_size * self.number_of_prepacks

    @property
    def is_successful(self) -> bool:
        return self.remarks == SUCCESSFUL


@dataclass(eq=False)
class StatusChange:
    status: PrepackingEventStatus
    author_id: Optional[str] = None
    created_date: datetime = field(default_factory=_now)
    id: str = field(default_factory=_new_id)


@dataclass(eq=False)
class PrepackingEvent:
    """
    A facility's request to split bulk lots into fixed-size prepacks.

    Status moves DRAFT -> AUTHORIZED or DRAFT -> REJECTED; both are terminal.
    ``events`` and ``context`` are transient and never persisted.
    """
    facility_id: str
    program_id: str
    line_items: List[PrepackingEventLineItem] = field(default_factory=list)
    comments: Optional[str] = None
    prepacker_user_id: Optional[str] = None
    prepacker_user_names: Optional[str] = None
    status: PrepackingEventStatus = PrepackingEventStatus.DRAFT
    date_created: datetime = field(default_factory=_now)
    date_authorised: Optional[datetime] = None
    status_changes: List[StatusChange] = field(default_factory=list)
    id: str = field(default_factory=_new_id)
    events: List = field(default_factory=list)
    context: Any = None

    @classmethod
    def submit(
        cls,
        facility_id: str,
        program_id: str,
        line_items: List[PrepackingEventLineItem],
        comments: Optional[str] = None,
        prepacker_user_id: Optional[str] = None,
        prepacker_user_names: Optional[str] = None,
    ) -> "PrepackingEvent":
        """
        Create a draft event and generate the PrepackingEventSubmitted event.

        Line items keep the order they were given in.
        """
        for position, line_item in enumerate(line_items):
            line_item.position = position

        event = cls(
            facility_id=facility_id,
            program_id=program_id,
            line_items=list(line_items),
            comments=comments,
            prepacker_user_id=prepacker_user_id,
            prepacker_user_names=prepacker_user_names,
        )
        event.status_changes.append(
            StatusChange(status=event.status, author_id=prepacker_user_id)
        )
        event.events.append(
            PrepackingEventSubmitted(
                event_id=event.id,
                facility_id=event.facility_id,
                program_id=event.program_id,
                line_item_count=len(event.line_items),
                created_at=event.date_created,
            )
        )
        return event

    @property
    def is_draft(self) -> bool:
        return self.status == PrepackingEventStatus.DRAFT

    def is_deletable(self) -> bool:
        return self.is_draft

    def _transition(self, status: PrepackingEventStatus, author_id: Optional[str]) -> StatusChange:
        if not self.is_draft:
            raise InvalidStatusTransition(
                f"Prepacking event {self.id} is {self.status.value}, cannot move to {status.value}"
            )
        self.status = status
        change = StatusChange(status=status, author_id=author_id)
        self.status_changes.append(change)
        return change

    def authorize(self, author_id: Optional[str] = None) -> None:
        """Mark the event authorized; line item remarks must already be set."""
        change = self._transition(PrepackingEventStatus.AUTHORIZED, author_id)
        self.date_authorised = change.created_date
        successful = sum(1 for item in self.line_items if item.is_successful)
        self.events.append(
            PrepackingEventAuthorized(
                event_id=self.id,
                facility_id=self.facility_id,
                program_id=self.program_id,
                author_id=author_id,
                successful_line_items=successful,
                unsuccessful_line_items=len(self.line_items) - successful,
                authorized_at=change.created_date,
            )
        )

    def reject(self, author_id: Optional[str] = None) -> None:
        change = self._transition(PrepackingEventStatus.REJECTED, author_id)
        self.events.append(
            PrepackingEventRejected(
                event_id=self.id,
                facility_id=self.facility_id,
                program_id=self.program_id,
                author_id=author_id,
                rejected_at=change.created_date,
            )
        )
