"""Reference data adapter - products (orderables), lots, trade items, facilities, programs."""

import abc
import logging
from typing import Any, Dict, List, Optional

import config
from prepacking.adapters.http import BaseServiceClient

logger = logging.getLogger(__name__)


class AbstractReferenceDataClient(abc.ABC):
    """
    Port to the reference data catalogs.

    All payloads are plain dicts in the reference data service's JSON shape
    (camelCase keys). ``find_*`` methods return None when nothing matches.
    """

    @abc.abstractmethod
    def find_orderable(self, orderable_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_orderables_by_code_and_name(self, code: str, name: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    def create_or_update_orderable(self, orderable: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_lot(self, lot_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_lot_matching(self, trade_item_id: str, lot_code: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    def create_lot(self, lot: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_facility(self, facility_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def find_facility_type(self, facility_id: str) -> Optional[Dict[str, Any]]:
        facility = self.find_facility(facility_id)
        if facility is None:
            return None
        return facility.get("type")

    @abc.abstractmethod
    def find_program(self, program_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    def create_trade_item(self, trade_item: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_approved_products(
        self, facility_type_code: str, program_code: str, orderable_id: str
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    def create_approved_product(self, approved_product: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abc.abstractmethod
    def find_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class HTTPReferenceDataClient(AbstractReferenceDataClient):
    """HTTP client for the reference data service API."""

    def __init__(self, base_url: Optional[str] = None, **client_options):
        self.client = BaseServiceClient(
            base_url or config.get_referencedata_url(), **client_options
        )

    def find_orderable(self, orderable_id):
        return self.client.get_one(f"/api/orderables/{orderable_id}")

    def find_orderables_by_code_and_name(self, code, name):
        return self.client.get_page("/api/orderables", params={"code": code, "name": name})

    def create_or_update_orderable(self, orderable):
        logger.info(f"Saving orderable {orderable.get('productCode')}")
        saved = self.client.request("PUT", "/api/orderables", json=orderable)
        return saved or orderable

    def find_lot(self, lot_id):
        return self.client.get_one(f"/api/lots/{lot_id}")

    def find_lot_matching(self, trade_item_id, lot_code):
        lots = self.client.get_page(
            "/api/lots", params={"tradeItemId": trade_item_id, "lotCode": lot_code}
        )
        return lots[0] if lots else None

    def create_lot(self, lot):
        logger.info(f"Creating lot {lot.get('lotCode')} for trade item {lot.get('tradeItemId')}")
        return self.client.request("POST", "/api/lots", json=lot)

    def find_facility(self, facility_id):
        return self.client.get_one(f"/api/facilities/{facility_id}")

    def find_program(self, program_id):
        return self.client.get_one(f"/api/programs/{program_id}")

    def create_trade_item(self, trade_item):
        logger.info("Registering trade item")
        return self.client.request("PUT", "/api/tradeItems", json=trade_item)

    def find_approved_products(self, facility_type_code, program_code, orderable_id):
        return self.client.get_page(
            "/api/facilityTypeApprovedProducts",
            params={
                "facilityType": facility_type_code,
                "program": program_code,
                "orderableId": orderable_id,
            },
        )

    def create_approved_product(self, approved_product):
        return self.client.request(
            "POST", "/api/facilityTypeApprovedProducts", json=approved_product
        )

    def find_user(self, user_id):
        return self.client.get_one(f"/api/users/{user_id}")
