# pylint: disable=broad-except
import logging

import config
from prepacking.domain import commands, events
from prepacking.domain.exceptions import InvalidStatusTransition, NotFound
from prepacking.domain.model import PrepackingEvent, PrepackingEventLineItem
from prepacking.service_layer.context import ProcessContextBuilder
from prepacking.service_layer.identity import PrepackIdentityResolver
from prepacking.service_layer.unit_of_work import AbstractUnitOfWork
from prepacking.service_layer.validation import ValidationPipeline
from prepacking.service_layer.workflow import PrepackAuthorizationWorkflow

logger = logging.getLogger(__name__)


def _line_item_from_payload(payload: dict) -> PrepackingEventLineItem:
    return PrepackingEventLineItem(
        orderable_id=payload.get("orderableId"),
        lot_id=payload.get("lotId"),
        prepack_size=payload.get("prepackSize"),
        number_of_prepacks=payload.get("numberOfPrepacks"),
        remarks=payload.get("remarks"),
        extra_data=payload.get("extraData") or {},
    )


def _build_workflow(uow: AbstractUnitOfWork) -> PrepackAuthorizationWorkflow:
    reason_ids = config.get_prepacking_reason_ids()
    return PrepackAuthorizationWorkflow(
        reference_data=uow.reference_data,
        stock_ledger=uow.stock_ledger,
        identity_resolver=PrepackIdentityResolver(uow.reference_data, uow.locks),
        debit_reason_id=reason_ids["debit"],
        credit_reason_id=reason_ids["credit"],
    )


def _get_draft(uow: AbstractUnitOfWork, event_id: str) -> PrepackingEvent:
    prepacking_event = uow.prepacking_events.get(event_id)
    if prepacking_event is None:
        raise NotFound(f"Prepacking event {event_id} not found")
    return prepacking_event


def submit_prepacking_event(
    command: commands.SubmitPrepackingEvent,
    uow: AbstractUnitOfWork
) -> str:
    """
    Validate and record a draft prepacking event.

    Flow:
    1. Build the draft and its process context
    2. Take the acting user from the context
    3. Run the validation pipeline (first failure aborts, nothing is stored)
    4. Store the draft and commit

    Returns:
        id of the recorded event

    Raises:
        ValidationError: if a business rule rejects the event
    """
    logger.info(f"Processing SubmitPrepackingEvent for facility {command.facility_id}")

    with uow:
        draft = PrepackingEvent.submit(
            facility_id=command.facility_id,
            program_id=command.program_id,
            line_items=[_line_item_from_payload(item) for item in command.line_items or []],
            comments=command.comments,
            prepacker_user_id=command.prepacker_user_id,
            prepacker_user_names=command.prepacker_user_names,
        )
        context = ProcessContextBuilder(uow.reference_data).build_context(
            draft, command.authentication
        )
        draft.context = context
        draft.prepacker_user_id = context.current_user_id
        draft.prepacker_user_names = context.current_user_names
        draft.status_changes[0].author_id = draft.prepacker_user_id

        reason_ids = config.get_prepacking_reason_ids()
        ValidationPipeline.default(
            uow.extensions, uow.reference_data, uow.stock_ledger, reason_ids
        ).validate(draft)

        event_id = uow.prepacking_events.add(draft)
        uow.commit()
        logger.info(f"Recorded prepacking event {event_id}")

    return event_id


def authorize_prepacking_event(
    command: commands.AuthorizePrepackingEvent,
    uow: AbstractUnitOfWork
) -> PrepackingEvent:
    """
    Carry out the split recorded on a draft event.

    Per line item outcomes end up in the remarks; the event always ends
    AUTHORIZED. When processing fails mid-way, for any reason, the remarks of
    line items already applied are committed before the error is re-raised,
    so a retry does not move their stock again.

    Raises:
        NotFound: unknown event
        InvalidStatusTransition: event is not a draft
        ExternalServiceError: reference data or stock ledger failure (retryable)
        ExternalApiError: reference data or stock ledger rejected a request
    """
    logger.info(f"Processing AuthorizePrepackingEvent for event {command.event_id}")

    with uow:
        prepacking_event = _get_draft(uow, command.event_id)
        if not prepacking_event.is_draft:
            raise InvalidStatusTransition(
                f"Prepacking event {command.event_id} is already {prepacking_event.status.value}"
            )

        context = ProcessContextBuilder(uow.reference_data).build_context(
            prepacking_event, command.authentication
        )
        prepacking_event.context = context

        try:
            _build_workflow(uow).authorize(prepacking_event, context)
        except Exception as e:
            logger.error(
                f"Authorization of prepacking event {command.event_id} interrupted "
                f"({type(e).__name__}): {e}"
            )
            uow.commit()
            raise

        uow.commit()
        logger.info(f"Authorized prepacking event {command.event_id}")

    return prepacking_event


def reject_prepacking_event(
    command: commands.RejectPrepackingEvent,
    uow: AbstractUnitOfWork
) -> PrepackingEvent:
    logger.info(f"Processing RejectPrepackingEvent for event {command.event_id}")

    with uow:
        prepacking_event = _get_draft(uow, command.event_id)
        context = ProcessContextBuilder(uow.reference_data).build_context(
            prepacking_event, command.authentication
        )
        _build_workflow(uow).reject(prepacking_event, context)
        uow.commit()

    return prepacking_event


def delete_prepacking_event(
    command: commands.DeletePrepackingEvent,
    uow: AbstractUnitOfWork
) -> None:
    """Delete a draft event; authorized and rejected events are kept."""
    with uow:
        prepacking_event = _get_draft(uow, command.event_id)
        if not prepacking_event.is_deletable():
            raise InvalidStatusTransition(
                f"Prepacking event {command.event_id} is {prepacking_event.status.value} and cannot be deleted"
            )
        uow.prepacking_events.delete(prepacking_event)
        uow.commit()
        logger.info(f"Deleted prepacking event {command.event_id}")


def publish_prepacking_event(event: events.Event, uow: AbstractUnitOfWork):
    """
    Publish a prepacking domain event to external systems.

    Args:
        event: any prepacking domain event
        uow: Unit of work
    """
    logger.info(f"Publishing {type(event).__name__} for prepacking event {event.event_id}")
    try:
        # Import here so importing handlers does not open a redis client
        from prepacking.adapters import redis_adapter

        redis_adapter.publish(redis_adapter.CHANNEL, event)
    except Exception as e:
        logger.error(f"Failed to publish {type(event).__name__} for {event.event_id}: {e}")
        # Don't re-raise - external failures shouldn't break the flow


def log_authorization_outcome(event: events.PrepackingEventAuthorized, uow: AbstractUnitOfWork):
    logger.info(
        f"Prepacking event {event.event_id} authorized: "
        f"{event.successful_line_items} successful, {event.unsuccessful_line_items} unsuccessful"
    )
