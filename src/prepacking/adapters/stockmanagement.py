"""Stock management adapter - stock on hand queries and stock event submission."""

import abc
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import config
from prepacking.adapters.http import BaseServiceClient

logger = logging.getLogger(__name__)


class AbstractStockLedgerClient(abc.ABC):
    """Port to the external stock ledger."""

    @abc.abstractmethod
    def search_stock_card_summaries(
        self,
        program_id: str,
        facility_id: str,
        orderable_ids: Iterable[str],
        as_of_date: date,
        lot_code: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find stock on hand.

        Returns:
            rows of ``{"orderableId", "lotId", "lotCode", "stockOnHand"}``;
            empty when the ledger has no matching stock card
        """
        raise NotImplementedError

    @abc.abstractmethod
    def submit_stock_event(self, stock_event: Dict[str, Any]) -> Optional[str]:
        """
        Submit a signed stock adjustment batch.

        Args:
            stock_event: ``{"facilityId", "programId", "userId", "lineItems": [
                {"orderableId", "lotId", "quantity", "occurredDate", "reasonId"}]}``

        Returns:
            id of the recorded stock event
        """
        raise NotImplementedError

    @abc.abstractmethod
    def find_reason(self, reason_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class HTTPStockLedgerClient(AbstractStockLedgerClient):
    """HTTP client for the stock management service API."""

    def __init__(self, base_url: Optional[str] = None, **client_options):
        self.client = BaseServiceClient(
            base_url or config.get_stockmanagement_url(), **client_options
        )

    def search_stock_card_summaries(self, program_id, facility_id, orderable_ids, as_of_date, lot_code=None):
        params = {
            "programId": program_id,
            "facilityId": facility_id,
            "orderableId": list(orderable_ids),
            "asOfDate": as_of_date.isoformat(),
        }
        if lot_code:
            params["lotCode"] = lot_code
        summaries = self.client.get_page("/api/v2/stockCardSummaries", params=params)
        return flatten_summaries(summaries, lot_code)

    def submit_stock_event(self, stock_event):
        logger.info(
            f"Submitting stock event for facility {stock_event['facilityId']} "
            f"with {len(stock_event['lineItems'])} line item(s)"
        )
        return self.client.request("POST", "/api/stockEvents", json=stock_event)

    def find_reason(self, reason_id):
        return self.client.get_one(f"/api/stockCardLineItemReasons/{reason_id}")


def flatten_summaries(summaries: List[Dict[str, Any]], lot_code: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Turn v2 stock card summaries into one row per orderable/lot stock card.

    Each summary holds ``canFulfillForMe`` entries referencing an orderable, an
    optional lot and the stock on hand. When ``lot_code`` is given, entries
    whose lot carries a different code are dropped.
    """
    rows = []
    for summary in summaries:
        for entry in summary.get("canFulfillForMe", []):
            lot = entry.get("lot") or {}
            entry_lot_code = lot.get("lotCode", lot_code if lot else None)
            if lot_code and entry_lot_code != lot_code:
                continue
            rows.append(
                {
                    "orderableId": (entry.get("orderable") or {}).get("id"),
                    "lotId": lot.get("id"),
                    "lotCode": entry_lot_code,
                    "stockOnHand": entry.get("stockOnHand") or 0,
                }
            )
    return rows
