# pylint: disable=redefined-outer-name
import uuid
from types import SimpleNamespace

import pytest

import config
from prepacking.adapters.locks import InMemoryLockProvider
from prepacking.adapters.referencedata import AbstractReferenceDataClient
from prepacking.adapters.repository import AbstractRepository
from prepacking.adapters.stockmanagement import AbstractStockLedgerClient
from prepacking.service_layer.extensions import ExtensionRegistry
from prepacking.service_layer.unit_of_work import AbstractUnitOfWork


def new_id():
    return str(uuid.uuid4())


class FakeReferenceDataClient(AbstractReferenceDataClient):
    """In-memory reference data; every create is recorded in ``created``."""

    def __init__(self):
        self.orderables = {}
        self.lots = {}
        self.facilities = {}
        self.programs = {}
        self.users = {}
        self.trade_items = {}
        self.approved_products = []
        self.created = []
        self.calls = []

    def find_orderable(self, orderable_id):
        self.calls.append(("find_orderable", orderable_id))
        return self.orderables.get(orderable_id)

    def find_orderables_by_code_and_name(self, code, name):
        self.calls.append(("find_orderables_by_code_and_name", code))
        return [
            o for o in self.orderables.values()
            if o["productCode"] == code and o["fullProductName"] == name
        ]

    def create_or_update_orderable(self, orderable):
        self.created.append(("orderable", orderable))
        self.orderables[orderable["id"]] = dict(orderable)
        return dict(orderable)

    def find_lot(self, lot_id):
        self.calls.append(("find_lot", lot_id))
        return self.lots.get(lot_id)

    def find_lot_matching(self, trade_item_id, lot_code):
        for lot in self.lots.values():
            if lot["tradeItemId"] == trade_item_id and lot["lotCode"] == lot_code:
                return lot
        return None

    def create_lot(self, lot):
        self.created.append(("lot", lot))
        saved = {**lot, "id": new_id()}
        self.lots[saved["id"]] = saved
        return saved

    def find_facility(self, facility_id):
        self.calls.append(("find_facility", facility_id))
        return self.facilities.get(facility_id)

    def find_program(self, program_id):
        self.calls.append(("find_program", program_id))
        return self.programs.get(program_id)

    def create_trade_item(self, trade_item):
        self.created.append(("trade_item", trade_item))
        saved = {**trade_item, "id": new_id()}
        self.trade_items[saved["id"]] = saved
        return saved

    def find_approved_products(self, facility_type_code, program_code, orderable_id):
        return [
            ap for ap in self.approved_products
            if ap["facilityType"]["code"] == facility_type_code
            and ap["program"]["code"] == program_code
            and ap["orderable"]["id"] == orderable_id
        ]

    def create_approved_product(self, approved_product):
        self.created.append(("approved_product", approved_product))
        self.approved_products.append(approved_product)
        return approved_product

    def find_user(self, user_id):
        self.calls.append(("find_user", user_id))
        return self.users.get(user_id)

    def created_of(self, kind):
        return [payload for created_kind, payload in self.created if created_kind == kind]


class FakeStockLedgerClient(AbstractStockLedgerClient):
    """Stock on hand keyed by (orderable id, lot code); submissions are recorded."""

    def __init__(self):
        self.stock = {}
        self.reasons = {}
        self.submitted = []
        self.searches = []
        self.fail_on_submit = None
        self.fail_on_exception = None

    def search_stock_card_summaries(self, program_id, facility_id, orderable_ids, as_of_date, lot_code=None):
        self.searches.append((program_id, facility_id, list(orderable_ids), as_of_date, lot_code))
        rows = []
        for orderable_id in orderable_ids:
            if (orderable_id, lot_code) in self.stock:
                rows.append({
                    "orderableId": orderable_id,
                    "lotId": None,
                    "lotCode": lot_code,
                    "stockOnHand": self.stock[(orderable_id, lot_code)],
                })
        return rows

    def submit_stock_event(self, stock_event):
        if self.fail_on_submit is not None and len(self.submitted) == self.fail_on_submit:
            raise self.fail_on_exception
        self.submitted.append(stock_event)
        return new_id()

    def find_reason(self, reason_id):
        return self.reasons.get(reason_id)

    def fail_at(self, submission_index, exception):
        self.fail_on_submit = submission_index
        self.fail_on_exception = exception


class FakeRepository(AbstractRepository):

    def __init__(self, prepacking_events=()):
        super().__init__()
        self._events = {e.id: e for e in prepacking_events}

    def _add(self, prepacking_event):
        self._events[prepacking_event.id] = prepacking_event

    def _get(self, event_id):
        return self._events.get(event_id)

    def _list_by(self, facility_id, program_id):
        return [
            e for e in self._events.values()
            if (facility_id is None or e.facility_id == facility_id)
            and (program_id is None or e.program_id == program_id)
        ]

    def _delete(self, prepacking_event):
        del self._events[prepacking_event.id]


class FakeUnitOfWork(AbstractUnitOfWork):

    def __init__(self, reference_data, stock_ledger, extensions=None):
        self.prepacking_events = FakeRepository()
        self.reference_data = reference_data
        self.stock_ledger = stock_ledger
        self.locks = InMemoryLockProvider()
        self.extensions = extensions or ExtensionRegistry()
        self.commits = 0

    def _commit(self):
        self.commits += 1

    def rollback(self):
        pass


@pytest.fixture
def world():
    """
    A facility able to prepack one bulk product/lot with 100 units on hand.
    """
    reference_data = FakeReferenceDataClient()
    stock_ledger = FakeStockLedgerClient()
    reason_ids = config.get_prepacking_reason_ids()

    program = {"id": new_id(), "code": "PRG001", "name": "Essential Meds"}
    facility_type = {"id": new_id(), "code": "health_center", "name": "Health Center"}
    facility = {
        "id": new_id(),
        "code": "HC01",
        "name": "Comfort Health Clinic",
        "active": True,
        "type": facility_type,
        "geographicZone": {"id": new_id(), "name": "Balaka"},
        "supportedPrograms": [{"id": program["id"], "code": program["code"], "supportActive": True}],
    }
    trade_item_id = new_id()
    bulk_orderable = {
        "id": new_id(),
        "productCode": "C100",
        "fullProductName": "Amoxicillin 250mg",
        "description": "Amoxicillin tablets",
        "netContent": 1000,
        "roundToZero": False,
        "dispensable": {"dispensingUnit": "tablet"},
        "programs": [{"programId": program["id"], "active": True}],
        "identifiers": {"tradeItem": trade_item_id},
        "extraData": {},
        "children": [],
    }
    bulk_lot = {
        "id": new_id(),
        "lotCode": "LOT-A",
        "tradeItemId": trade_item_id,
        "expirationDate": "2027-12-31",
        "manufactureDate": "2025-01-01",
        "active": True,
    }
    user = {"id": new_id(), "username": "prepacker", "firstName": "Ada", "lastName": "Banda"}

    reference_data.programs[program["id"]] = program
    reference_data.facilities[facility["id"]] = facility
    reference_data.orderables[bulk_orderable["id"]] = bulk_orderable
    reference_data.lots[bulk_lot["id"]] = bulk_lot
    reference_data.users[user["id"]] = user
    reference_data.approved_products.append({
        "orderable": {"id": bulk_orderable["id"]},
        "facilityType": facility_type,
        "program": program,
    })

    stock_ledger.stock[(bulk_orderable["id"], bulk_lot["lotCode"])] = 100
    stock_ledger.reasons[reason_ids["debit"]] = {
        "id": reason_ids["debit"], "name": "Prepacking debit",
        "reasonType": "DEBIT", "reasonCategory": "ADJUSTMENT",
    }
    stock_ledger.reasons[reason_ids["credit"]] = {
        "id": reason_ids["credit"], "name": "Prepacking credit",
        "reasonType": "CREDIT", "reasonCategory": "ADJUSTMENT",
    }

    return SimpleNamespace(
        reference_data=reference_data,
        stock_ledger=stock_ledger,
        reason_ids=reason_ids,
        program=program,
        facility=facility,
        facility_type=facility_type,
        bulk_orderable=bulk_orderable,
        bulk_lot=bulk_lot,
        user=user,
    )


@pytest.fixture
def fake_uow(world):
    return FakeUnitOfWork(world.reference_data, world.stock_ledger)


@pytest.fixture
def sqlite_session_factory():
    """Create SQLite in-memory database for fast testing."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker, clear_mappers
    from prepacking.adapters import orm

    engine = create_engine("sqlite:///:memory:")
    orm.metadata.create_all(engine)
    orm.start_mappers()

    yield sessionmaker(bind=engine, expire_on_commit=False)

    clear_mappers()
    engine.dispose()
