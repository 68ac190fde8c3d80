"""Unit tests for the command handlers, driven through the message bus."""
from unittest.mock import patch

import pytest

from prepacking.adapters.http import ExternalApiError, ExternalServiceError
from prepacking.domain import commands, events
from prepacking.domain.exceptions import InvalidStatusTransition, NotFound, ValidationError
from prepacking.domain.model import INADEQUATE_STOCK, SUCCESSFUL, PrepackingEventStatus
from prepacking.service_layer import messagebus

CLIENT = commands.Authentication(client_only=True, client_id="trusted-client")


@pytest.fixture(autouse=True)
def mock_publish():
    with patch("prepacking.adapters.redis_adapter.publish") as publish:
        yield publish


def submit(world, uow, authentication=CLIENT, more_line_items=(), **line_item):
    payload = {
        "orderableId": world.bulk_orderable["id"],
        "lotId": world.bulk_lot["id"],
        "prepackSize": 10,
        "numberOfPrepacks": 5,
    }
    payload.update(line_item)
    cmd = commands.SubmitPrepackingEvent(
        facility_id=world.facility["id"],
        program_id=world.program["id"],
        line_items=[payload, *more_line_items],
        authentication=authentication,
        comments="weekly prepack",
        prepacker_user_id=world.user["id"],
        prepacker_user_names="Ada, Banda",
    )
    return messagebus.handle(cmd, uow)[0]


class TestSubmit:

    def test_records_draft(self, world, fake_uow):
        event_id = submit(world, fake_uow)

        stored = fake_uow.prepacking_events.get(event_id)
        assert stored.status == PrepackingEventStatus.DRAFT
        assert stored.line_items[0].quantity_to_prepack == 50
        assert stored.prepacker_user_id == world.user["id"]
        assert fake_uow.commits == 1

    def test_session_user_becomes_prepacker(self, world, fake_uow):
        other = {"id": "user-2", "firstName": "Grace", "lastName": "Phiri"}
        world.reference_data.users[other["id"]] = other

        event_id = submit(
            world, fake_uow, authentication=commands.Authentication(client_only=False, user_id="user-2")
        )

        stored = fake_uow.prepacking_events.get(event_id)
        assert stored.prepacker_user_id == "user-2"
        assert stored.prepacker_user_names == "Grace, Phiri"
        assert stored.status_changes[0].author_id == "user-2"

    def test_invalid_event_is_not_stored(self, world, fake_uow):
        with pytest.raises(ValidationError):
            submit(world, fake_uow, numberOfPrepacks=0)

        assert fake_uow.prepacking_events.list_by() == []
        assert fake_uow.commits == 0

    def test_unknown_facility(self, world, fake_uow):
        world.reference_data.facilities.clear()

        with pytest.raises(NotFound):
            submit(world, fake_uow)

    def test_publishes_submitted_event(self, world, fake_uow, mock_publish):
        event_id = submit(world, fake_uow)

        published = mock_publish.call_args.args[1]
        assert isinstance(published, events.PrepackingEventSubmitted)
        assert published.event_id == event_id


class TestAuthorize:

    def test_authorizes_draft(self, world, fake_uow, mock_publish):
        event_id = submit(world, fake_uow)

        [authorized] = messagebus.handle(
            commands.AuthorizePrepackingEvent(event_id=event_id, authentication=CLIENT), fake_uow
        )

        assert authorized.status == PrepackingEventStatus.AUTHORIZED
        assert authorized.line_items[0].remarks == SUCCESSFUL
        assert len(world.stock_ledger.submitted) == 1
        assert fake_uow.commits == 2
        assert isinstance(mock_publish.call_args.args[1], events.PrepackingEventAuthorized)

    def test_inadequate_stock_still_authorizes(self, world, fake_uow):
        event_id = submit(world, fake_uow, numberOfPrepacks=11)

        [authorized] = messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

        assert authorized.status == PrepackingEventStatus.AUTHORIZED
        assert authorized.line_items[0].remarks == INADEQUATE_STOCK

    def test_unknown_event(self, fake_uow):
        with pytest.raises(NotFound):
            messagebus.handle(commands.AuthorizePrepackingEvent(event_id="missing"), fake_uow)

    def test_cannot_authorize_twice(self, world, fake_uow):
        event_id = submit(world, fake_uow)
        messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

        with pytest.raises(InvalidStatusTransition):
            messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)
        assert len(world.stock_ledger.submitted) == 1

    def test_external_failure_keeps_progress_and_can_be_retried(self, world, fake_uow):
        event_id = submit(world, fake_uow)
        world.stock_ledger.fail_at(0, ExternalServiceError("stock ledger timed out"))

        with pytest.raises(ExternalServiceError):
            messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

        stored = fake_uow.prepacking_events.get(event_id)
        assert stored.status == PrepackingEventStatus.DRAFT
        assert fake_uow.commits == 2

        world.stock_ledger.fail_at(None, None)
        [authorized] = messagebus.handle(
            commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow
        )
        assert authorized.status == PrepackingEventStatus.AUTHORIZED
        assert stock_lines(world, "debit") == stock_lines(world, "credit") == [50]

    def test_rejected_request_on_later_line_item_keeps_earlier_progress(self, world, fake_uow):
        second_lot = {**world.bulk_lot, "id": "lot-b", "lotCode": "LOT-B"}
        world.reference_data.lots["lot-b"] = second_lot
        world.stock_ledger.stock[(world.bulk_orderable["id"], "LOT-B")] = 100
        event_id = submit(world, fake_uow, more_line_items=[{
            "orderableId": world.bulk_orderable["id"],
            "lotId": "lot-b",
            "prepackSize": 10,
            "numberOfPrepacks": 2,
        }])
        world.stock_ledger.fail_at(1, ExternalApiError("rejected", status_code=400))

        with pytest.raises(ExternalApiError):
            messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

        stored = fake_uow.prepacking_events.get(event_id)
        assert stored.status == PrepackingEventStatus.DRAFT
        assert [item.remarks for item in stored.line_items] == [SUCCESSFUL, None]
        assert fake_uow.commits == 2

        world.stock_ledger.fail_at(None, None)
        messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

        bulk_debits = [
            line
            for stock_event in world.stock_ledger.submitted
            for line in stock_event["lineItems"]
            if line["lotId"] == world.bulk_lot["id"]
        ]
        assert len(bulk_debits) == 1
        assert stock_lines(world, "debit") == [50, 20]
        assert stock_lines(world, "credit") == [50, 20]


def stock_lines(world, reason):
    return [
        line["quantity"]
        for stock_event in world.stock_ledger.submitted
        for line in stock_event["lineItems"]
        if line["reasonId"] == world.reason_ids[reason]
    ]


class TestRejectAndDelete:

    def test_reject_draft(self, world, fake_uow):
        event_id = submit(world, fake_uow)

        [rejected] = messagebus.handle(commands.RejectPrepackingEvent(event_id=event_id), fake_uow)

        assert rejected.status == PrepackingEventStatus.REJECTED
        assert world.stock_ledger.submitted == []

    def test_rejected_event_cannot_be_authorized(self, world, fake_uow):
        event_id = submit(world, fake_uow)
        messagebus.handle(commands.RejectPrepackingEvent(event_id=event_id), fake_uow)

        with pytest.raises(InvalidStatusTransition):
            messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

    def test_delete_draft(self, world, fake_uow):
        event_id = submit(world, fake_uow)

        messagebus.handle(commands.DeletePrepackingEvent(event_id=event_id), fake_uow)

        assert fake_uow.prepacking_events.get(event_id) is None

    def test_authorized_event_cannot_be_deleted(self, world, fake_uow):
        event_id = submit(world, fake_uow)
        messagebus.handle(commands.AuthorizePrepackingEvent(event_id=event_id), fake_uow)

        with pytest.raises(InvalidStatusTransition):
            messagebus.handle(commands.DeletePrepackingEvent(event_id=event_id), fake_uow)


def test_publish_failure_does_not_break_the_command(world, fake_uow, mock_publish):
    mock_publish.side_effect = ConnectionError("redis down")

    event_id = submit(world, fake_uow)

    assert fake_uow.prepacking_events.get(event_id) is not None
