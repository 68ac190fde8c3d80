"""Derivation and idempotent lookup-or-create of prepack products and child lots."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from prepacking.adapters.http import ExternalApiError
from prepacking.adapters.locks import AbstractLockProvider, InMemoryLockProvider
from prepacking.adapters.referencedata import AbstractReferenceDataClient
from prepacking.domain.model import (
    DerivedIdentity,
    prepack_lot_code,
    prepack_product_code,
    prepack_product_name,
)

logger = logging.getLogger(__name__)

TRADE_ITEM_IDENTIFIER = "tradeItem"
LOCAL_MANUFACTURER = "Local Manufacturer"
DEFAULT_PERIODS_OF_STOCK = 1.0


class PrepackIdentityResolver:
    """
    Resolves the prepack orderable and child lot for a bulk product/lot/size.

    The same bulk identity and prepack size always resolve to the same derived
    product and lot: lookups run by derived code under a lock keyed by that
    code, and only a miss leads to a create.
    """

    def __init__(
        self,
        reference_data: AbstractReferenceDataClient,
        locks: Optional[AbstractLockProvider] = None,
    ):
        self.reference_data = reference_data
        self.locks = locks or InMemoryLockProvider()

    def resolve(
        self, bulk_orderable: Dict[str, Any], bulk_lot: Dict[str, Any], prepack_size: int
    ) -> DerivedIdentity:
        code = prepack_product_code(bulk_orderable["productCode"], prepack_size)
        name = prepack_product_name(bulk_orderable["fullProductName"], prepack_size)

        with self.locks.lock(code):
            orderable = self._find_orderable(code, name)
            if orderable is None:
                trade_item_id = self._register_trade_item()
                orderable = self._create_or_find(
                    lambda: self._create_orderable(
                        bulk_orderable, prepack_size, code, name, trade_item_id
                    ),
                    lambda: self._find_orderable(code, name),
                )
                orderable = self._ensure_trade_item(orderable, trade_item_id)
            else:
                logger.info(f"Prepack orderable {code} already exists")
                orderable = self._ensure_trade_item(orderable)

        trade_item_id = orderable["identifiers"][TRADE_ITEM_IDENTIFIER]
        lot_code = prepack_lot_code(bulk_lot["lotCode"], prepack_size)
        with self.locks.lock(f"{trade_item_id}:{lot_code}"):
            lot = self.reference_data.find_lot_matching(trade_item_id, lot_code)
            if lot is None:
                lot = self._create_or_find(
                    lambda: self._create_lot(bulk_lot, trade_item_id, lot_code),
                    lambda: self.reference_data.find_lot_matching(trade_item_id, lot_code),
                )

        return DerivedIdentity(orderable=orderable, lot=lot)

    def ensure_approved_product(
        self,
        orderable: Dict[str, Any],
        facility_type: Dict[str, Any],
        program: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Find or create the facility type approval of ``orderable`` in ``program``."""
        facility_type_code = facility_type.get("code")
        program_code = program.get("code")

        with self.locks.lock(f"ftap:{facility_type_code}:{program_code}:{orderable['id']}"):
            approved = self.reference_data.find_approved_products(
                facility_type_code, program_code, orderable["id"]
            )
            if approved:
                return approved[0]

            logger.info(
                f"Approving {orderable['productCode']} for facility type "
                f"{facility_type_code} in program {program_code}"
            )
            return self.reference_data.create_approved_product(
                {
                    "orderable": {"id": orderable["id"]},
                    "facilityType": facility_type,
                    "program": program,
                    "maxPeriodsOfStock": DEFAULT_PERIODS_OF_STOCK,
                    "minPeriodsOfStock": DEFAULT_PERIODS_OF_STOCK,
                    "emergencyOrderPoint": DEFAULT_PERIODS_OF_STOCK,
                    "active": True,
                    "meta": {},
                }
            )

    def _find_orderable(self, code: str, name: str) -> Optional[Dict[str, Any]]:
        orderables = self.reference_data.find_orderables_by_code_and_name(code, name)
        for orderable in orderables:
            if orderable.get("productCode") == code:
                return orderable
        return None

    def _create_or_find(
        self,
        create: Callable[[], Dict[str, Any]],
        find: Callable[[], Optional[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """Create; if another writer got there first, use what it created."""
        try:
            return create()
        except ExternalApiError as e:
            if not e.is_conflict:
                raise
            logger.warning(f"Create rejected as a conflict, looking up the existing record: {e}")
            existing = find()
            if existing is None:
                raise
            return existing

    def _register_trade_item(self) -> str:
        trade_item = self.reference_data.create_trade_item(
            {"manufacturerOfTradeItem": LOCAL_MANUFACTURER}
        )
        return trade_item["id"]

    def _create_orderable(
        self,
        bulk_orderable: Dict[str, Any],
        prepack_size: int,
        code: str,
        name: str,
        trade_item_id: str,
    ) -> Dict[str, Any]:
        logger.info(f"Creating prepack orderable {code}")
        orderable = {
            "id": str(uuid.uuid4()),
            "productCode": code,
            "fullProductName": name,
            "description": f"{bulk_orderable.get('description')}-{prepack_size}",
            "netContent": prepack_size,
            "packRoundingThreshold": prepack_size // 2,
            "roundToZero": bulk_orderable.get("roundToZero"),
            "dispensable": bulk_orderable.get("dispensable"),
            "programs": bulk_orderable.get("programs", []),
            "identifiers": {TRADE_ITEM_IDENTIFIER: trade_item_id},
            "meta": {
                "versionNumber": 1,
                "lastUpdated": datetime.now(timezone.utc).isoformat(),
            },
        }
        return self.reference_data.create_or_update_orderable(orderable)

    def _ensure_trade_item(
        self, orderable: Dict[str, Any], registered_trade_item_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Make sure ``orderable`` carries a trade item.

        ``registered_trade_item_id`` is a trade item already registered for
        this orderable; it is attached instead of registering another one.
        """
        identifiers = orderable.get("identifiers") or {}
        existing = identifiers.get(TRADE_ITEM_IDENTIFIER)
        if existing:
            if registered_trade_item_id and existing != registered_trade_item_id:
                logger.warning(
                    f"Trade item {registered_trade_item_id} is unused: prepack orderable "
                    f"{orderable['productCode']} was created elsewhere with trade item {existing}"
                )
            return orderable

        trade_item_id = registered_trade_item_id
        if trade_item_id is None:
            logger.info(f"Prepack orderable {orderable['productCode']} has no trade item, registering one")
            trade_item_id = self._register_trade_item()
        updated = dict(orderable)
        updated["identifiers"] = {**identifiers, TRADE_ITEM_IDENTIFIER: trade_item_id}
        return self.reference_data.create_or_update_orderable(updated)

    def _create_lot(self, bulk_lot: Dict[str, Any], trade_item_id: str, lot_code: str) -> Dict[str, Any]:
        logger.info(f"Creating child lot {lot_code} for trade item {trade_item_id}")
        return self.reference_data.create_lot(
            {
                "lotCode": lot_code,
                "tradeItemId": trade_item_id,
                "expirationDate": bulk_lot.get("expirationDate"),
                "manufactureDate": bulk_lot.get("manufactureDate"),
                "active": bulk_lot.get("active", True),
            }
        )
