"""Unit tests for the process context and its builder."""
from unittest.mock import Mock

import pytest

from prepacking.domain.commands import Authentication
from prepacking.domain.exceptions import NotFound
from prepacking.domain.model import PrepackingEvent, PrepackingEventLineItem
from prepacking.service_layer.context import ProcessContext, ProcessContextBuilder


def make_draft(world, prepacker_user_id="client-asserted-user", prepacker_user_names="Grace, Phiri"):
    return PrepackingEvent.submit(
        facility_id=world.facility["id"],
        program_id=world.program["id"],
        line_items=[
            PrepackingEventLineItem(world.bulk_orderable["id"], world.bulk_lot["id"], 10, 5)
        ],
        prepacker_user_id=prepacker_user_id,
        prepacker_user_names=prepacker_user_names,
    )


class TestProcessContext:

    def test_value_is_computed_once(self):
        supplier = Mock(return_value={"id": "facility-1"})
        context = ProcessContext()
        context.register("facility", supplier)

        assert not context.is_loaded("facility")
        assert context.get("facility") == {"id": "facility-1"}
        assert context.get("facility") is context.get("facility")
        assert context.is_loaded("facility")
        supplier.assert_called_once()

    def test_unused_value_is_never_computed(self):
        supplier = Mock()
        context = ProcessContext()
        context.register("program", supplier)

        assert context.is_registered("program")
        supplier.assert_not_called()

    def test_unregistered_key(self):
        with pytest.raises(KeyError):
            ProcessContext().get("facility")

    def test_supplier_error_propagates_and_is_not_cached(self):
        supplier = Mock(side_effect=[RuntimeError("boom"), {"id": "facility-1"}])
        context = ProcessContext()
        context.register("facility", supplier)

        with pytest.raises(RuntimeError):
            context.get("facility")
        assert context.get("facility") == {"id": "facility-1"}


class TestProcessContextBuilder:

    def test_client_only_takes_user_from_draft(self, world):
        draft = make_draft(world)

        context = ProcessContextBuilder(world.reference_data).build_context(
            draft, Authentication(client_only=True, client_id="trusted-client")
        )

        assert context.current_user_id == "client-asserted-user"
        assert context.current_user_names == "Grace, Phiri"
        assert not any(call[0] == "find_user" for call in world.reference_data.calls)

    def test_session_user_comes_from_authentication(self, world):
        draft = make_draft(world)

        context = ProcessContextBuilder(world.reference_data).build_context(
            draft, Authentication(client_only=False, user_id=world.user["id"])
        )

        assert context.current_user_id == world.user["id"]
        assert context.current_user_names == "Ada, Banda"

    def test_session_user_overrides_prepacker_in_draft(self, world):
        draft = make_draft(world, prepacker_user_id="someone-else")

        context = ProcessContextBuilder(world.reference_data).build_context(
            draft, Authentication(client_only=False, user_id=world.user["id"])
        )

        assert context.current_user_id == world.user["id"]
        assert draft.prepacker_user_id == "someone-else"

    def test_unknown_session_user(self, world):
        draft = make_draft(world)
        context = ProcessContextBuilder(world.reference_data).build_context(
            draft, Authentication(client_only=False, user_id="ghost")
        )

        with pytest.raises(NotFound):
            context.current_user_names

    def test_facility_and_program_are_lazy_and_fetched_once(self, world):
        draft = make_draft(world)
        context = ProcessContextBuilder(world.reference_data).build_context(
            draft, Authentication(client_only=True)
        )
        assert world.reference_data.calls == []

        for _ in range(3):
            assert context.facility["id"] == world.facility["id"]
            assert context.program["code"] == "PRG001"
        assert context.facility_type["code"] == "health_center"

        assert world.reference_data.calls == [
            ("find_facility", world.facility["id"]),
            ("find_program", world.program["id"]),
        ]

    def test_unknown_facility(self, world):
        draft = make_draft(world)
        draft.facility_id = "missing"
        context = ProcessContextBuilder(world.reference_data).build_context(
            draft, Authentication(client_only=True)
        )

        with pytest.raises(NotFound):
            context.facility
