# pylint: disable=broad-except
"""Message bus for the prepacking service."""

from __future__ import annotations
import logging
from typing import List, Dict, Callable, Type, Union, TYPE_CHECKING

from prepacking.domain import commands, events
from prepacking.service_layer import handlers

if TYPE_CHECKING:
    from prepacking.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Message = Union[commands.Command, events.Event]


def handle(
    message: Message,
    uow: AbstractUnitOfWork,
):
    """Handle message (command or event) with the appropriate handler."""
    results = []
    queue = [message]

    while queue:
        message = queue.pop(0)

        if isinstance(message, events.Event):
            handle_event(message, queue, uow)
        elif isinstance(message, commands.Command):
            cmd_result = handle_command(message, queue, uow)
            results.append(cmd_result)
        else:
            raise Exception(f"{message} was not an Event or Command")

    return results


def handle_event(
    event: events.Event,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle event by calling all registered event handlers."""
    for handler in EVENT_HANDLERS[type(event)]:
        try:
            logger.debug(f"handling event {event} with handler {handler}")
            handler(event, uow=uow)
            queue.extend(uow.collect_new_events())
        except Exception:
            logger.exception("Exception handling event %s", event)
            continue


def handle_command(
    command: commands.Command,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle command by calling the registered command handler."""
    logger.debug(f"handling command {command}")
    try:
        handler = COMMAND_HANDLERS[type(command)]
        result = handler(command, uow=uow)
        queue.extend(uow.collect_new_events())
        return result
    except Exception:
        logger.exception("Exception handling command %s", command)
        raise


EVENT_HANDLERS = {
    events.PrepackingEventSubmitted: [handlers.publish_prepacking_event],
    events.PrepackingEventAuthorized: [
        handlers.log_authorization_outcome,
        handlers.publish_prepacking_event,
    ],
    events.PrepackingEventRejected: [handlers.publish_prepacking_event],
}  # type: Dict[Type[events.Event], List[Callable]]

COMMAND_HANDLERS = {
    commands.SubmitPrepackingEvent: handlers.submit_prepacking_event,
    commands.AuthorizePrepackingEvent: handlers.authorize_prepacking_event,
    commands.RejectPrepackingEvent: handlers.reject_prepacking_event,
    commands.DeletePrepackingEvent: handlers.delete_prepacking_event,
}  # type: Dict[Type[commands.Command], Callable]
