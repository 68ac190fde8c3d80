"""Authorization of prepacking events - moving stock from bulk lots to prepacks."""

import logging
from datetime import date
from typing import Any, Callable, Dict, Optional

from prepacking.adapters.referencedata import AbstractReferenceDataClient
from prepacking.adapters.stockmanagement import AbstractStockLedgerClient
from prepacking.domain.model import (
    INADEQUATE_STOCK,
    ORDERABLE_DOES_NOT_EXIST,
    SUCCESSFUL,
    PrepackingEvent,
    PrepackingEventLineItem,
)
from prepacking.service_layer.context import ProcessContext
from prepacking.service_layer.identity import PrepackIdentityResolver

logger = logging.getLogger(__name__)


class PrepackAuthorizationWorkflow:
    """
    Processes the line items of a draft event strictly in list order.

    For each line item that has enough stock, the bulk product/lot is debited
    and the derived prepack product/lot is credited with the same quantity.
    "Inadequate stock" and "orderable does not exist" are per line item
    outcomes recorded in its remarks, not errors. A line item that fails does
    not undo line items already applied.

    Failures of the external services propagate to the caller, leaving the
    remarks reached so far on the line items. Line items already remarked
    "Successful" are skipped, so retrying after such a failure does not move
    their stock twice.
    """

    def __init__(
        self,
        reference_data: AbstractReferenceDataClient,
        stock_ledger: AbstractStockLedgerClient,
        identity_resolver: PrepackIdentityResolver,
        debit_reason_id: str,
        credit_reason_id: str,
        today: Callable[[], date] = date.today,
    ):
        self.reference_data = reference_data
        self.stock_ledger = stock_ledger
        self.identity_resolver = identity_resolver
        self.debit_reason_id = debit_reason_id
        self.credit_reason_id = credit_reason_id
        self.today = today

    def authorize(self, event: PrepackingEvent, context: ProcessContext) -> PrepackingEvent:
        logger.info(f"Authorizing prepacking event {event.id} with {len(event.line_items)} line item(s)")

        for line_item in event.line_items:
            if line_item.is_successful:
                logger.info(f"Line item {line_item.id} already prepacked, skipping")
                continue
            line_item.remarks = self._process_line_item(event, line_item, context)
            logger.info(
                f"Line item {line_item.id} (orderable {line_item.orderable_id}, "
                f"lot {line_item.lot_id}): {line_item.remarks}"
            )

        event.authorize(context.current_user_id)
        return event

    def reject(self, event: PrepackingEvent, context: ProcessContext) -> PrepackingEvent:
        logger.info(f"Rejecting prepacking event {event.id}")
        event.reject(context.current_user_id)
        return event

    def _process_line_item(
        self, event: PrepackingEvent, line_item: PrepackingEventLineItem, context: ProcessContext
    ) -> str:
        today = self.today()

        bulk_lot = self.reference_data.find_lot(line_item.lot_id)
        if bulk_lot is None:
            return ORDERABLE_DOES_NOT_EXIST

        stock_on_hand = self._stock_on_hand(event, line_item, bulk_lot, today)
        if stock_on_hand is None:
            return ORDERABLE_DOES_NOT_EXIST
        line_item.stock_on_hand = stock_on_hand

        quantity = line_item.quantity_to_prepack
        if quantity > stock_on_hand:
            return INADEQUATE_STOCK

        bulk_orderable = self.reference_data.find_orderable(line_item.orderable_id)
        if bulk_orderable is None:
            return ORDERABLE_DOES_NOT_EXIST

        derived = self.identity_resolver.resolve(bulk_orderable, bulk_lot, line_item.prepack_size)
        self.identity_resolver.ensure_approved_product(
            derived.orderable, context.facility_type or {}, context.program
        )

        # one stock event carries both halves; the ledger applies it atomically
        self.stock_ledger.submit_stock_event(
            {
                "facilityId": event.facility_id,
                "programId": event.program_id,
                "userId": context.current_user_id,
                "lineItems": [
                    self._stock_line(
                        bulk_orderable["id"], line_item.lot_id, quantity, today, self.debit_reason_id
                    ),
                    self._stock_line(
                        derived.orderable_id, derived.lot_id, quantity, today, self.credit_reason_id
                    ),
                ],
            }
        )
        return SUCCESSFUL

    def _stock_on_hand(
        self, event: PrepackingEvent, line_item: PrepackingEventLineItem, bulk_lot: Dict[str, Any], today: date
    ) -> Optional[int]:
        summaries = self.stock_ledger.search_stock_card_summaries(
            event.program_id,
            event.facility_id,
            [line_item.orderable_id],
            today,
            bulk_lot.get("lotCode"),
        )
        if not summaries:
            return None
        return summaries[0]["stockOnHand"]

    @staticmethod
    def _stock_line(
        orderable_id: str,
        lot_id: str,
        quantity: int,
        occurred_date: date,
        reason_id: str,
    ) -> Dict[str, Any]:
        return {
            "orderableId": orderable_id,
            "lotId": lot_id,
            "quantity": quantity,
            "occurredDate": occurred_date.isoformat(),
            "reasonId": reason_id,
        }
