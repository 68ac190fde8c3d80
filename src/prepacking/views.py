"""
Views for read operations - separate from the command/write path.

Events are serialized inside the unit of work so lazy collections are
loaded while the session is open.
"""
import logging
from typing import Any, Dict, List, Optional

from prepacking.domain.model import PrepackingEvent
from prepacking.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def _isoformat(value):
    return value.isoformat() if value is not None else None


def serialize(prepacking_event: PrepackingEvent) -> Dict[str, Any]:
    return {
        "id": prepacking_event.id,
        "dateCreated": _isoformat(prepacking_event.date_created),
        "dateAuthorised": _isoformat(prepacking_event.date_authorised),
        "facilityId": prepacking_event.facility_id,
        "programId": prepacking_event.program_id,
        "comments": prepacking_event.comments,
        "prepackerUserId": prepacking_event.prepacker_user_id,
        "prepackerUserNames": prepacking_event.prepacker_user_names,
        "status": prepacking_event.status.value,
        "lineItems": [
            {
                "id": item.id,
                "orderableId": item.orderable_id,
                "lotId": item.lot_id,
                "prepackSize": item.prepack_size,
                "numberOfPrepacks": item.number_of_prepacks,
                "quantityToPrepack": item.quantity_to_prepack,
                "remarks": item.remarks,
                "stockOnHand": item.stock_on_hand,
                "extraData": item.extra_data or {},
            }
            for item in prepacking_event.line_items
        ],
        "statusChanges": [
            {
                "status": change.status.value,
                "authorId": change.author_id,
                "createdDate": _isoformat(change.created_date),
            }
            for change in prepacking_event.status_changes
        ],
    }


def get_prepacking_event(event_id: str, uow: AbstractUnitOfWork) -> Optional[Dict[str, Any]]:
    with uow:
        prepacking_event = uow.prepacking_events.get(event_id)
        if prepacking_event is None:
            return None
        return serialize(prepacking_event)


def list_prepacking_events(
    uow: AbstractUnitOfWork,
    facility_id: Optional[str] = None,
    program_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    with uow:
        return [
            serialize(prepacking_event)
            for prepacking_event in uow.prepacking_events.list_by(facility_id, program_id)
        ]
