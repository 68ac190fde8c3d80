"""
Business rules a prepacking event must pass before it is recorded.

Rules run in a fixed order and stop at the first failure: structural checks,
then referential checks against reference data, then domain checks.
"""

import abc
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from prepacking.adapters.referencedata import AbstractReferenceDataClient
from prepacking.adapters.stockmanagement import AbstractStockLedgerClient
from prepacking.domain.exceptions import ValidationError
from prepacking.domain.model import PrepackingEvent
from prepacking.service_layer.context import ProcessContext
from prepacking.service_layer.extensions import (
    ADJUSTMENT_REASON_POINT_ID,
    FREE_TEXT_POINT_ID,
    UNPACK_KIT_POINT_ID,
    ExtensionRegistry,
)

logger = logging.getLogger(__name__)

MAX_COMMENTS_LENGTH = 255
REASON_DEBIT = "DEBIT"
REASON_CREDIT = "CREDIT"
PHYSICAL_INVENTORY_CATEGORY = "PHYSICAL_INVENTORY"
EXPIRED_VVM_STATUSES = ("STAGE_3", "STAGE_4")


@dataclass(frozen=True)
class ValidationFailure:
    message: str
    field: Optional[str] = None


class Validator(abc.ABC):
    """A single business rule."""

    @abc.abstractmethod
    def validate(self, event: PrepackingEvent) -> Optional[ValidationFailure]:
        """Return None when the event passes, a ValidationFailure otherwise."""
        raise NotImplementedError


class AdjustmentReasonValidator(Validator):
    """Extension point: are the configured reasons fit for a prepack?"""


class FreeTextValidator(Validator):
    """Extension point: rules on free-text fields."""


class UnpackKitValidator(Validator):
    """Extension point: rules on kit orderables."""


class ReferenceLookups:
    """
    Reference data reads shared by the validators.

    Results are kept in the event's ProcessContext when one is attached, so a
    facility or orderable read by several rules is fetched once.
    """

    def __init__(
        self,
        reference_data: AbstractReferenceDataClient,
        stock_ledger: AbstractStockLedgerClient,
        reason_ids: Dict[str, str],
    ):
        self.reference_data = reference_data
        self.stock_ledger = stock_ledger
        self.reason_ids = reason_ids

    def _cached(self, event: PrepackingEvent, key: str, supplier: Callable[[], Any]) -> Any:
        context = event.context
        if not isinstance(context, ProcessContext):
            return supplier()
        if not context.is_registered(key):
            context.register(key, supplier)
        return context.get(key)

    def facility(self, event: PrepackingEvent) -> Optional[Dict[str, Any]]:
        return self._cached(
            event, "facility", lambda: self.reference_data.find_facility(event.facility_id)
        )

    def program(self, event: PrepackingEvent) -> Optional[Dict[str, Any]]:
        return self._cached(
            event, "program", lambda: self.reference_data.find_program(event.program_id)
        )

    def orderable(self, event: PrepackingEvent, orderable_id: str) -> Optional[Dict[str, Any]]:
        return self._cached(
            event,
            f"orderable:{orderable_id}",
            lambda: self.reference_data.find_orderable(orderable_id),
        )

    def lot(self, event: PrepackingEvent, lot_id: str) -> Optional[Dict[str, Any]]:
        return self._cached(event, f"lot:{lot_id}", lambda: self.reference_data.find_lot(lot_id))

    def reasons(self, event: PrepackingEvent) -> Dict[str, Optional[Dict[str, Any]]]:
        """The configured debit and credit reasons, None where the ledger has none."""
        return self._cached(
            event,
            "reasons",
            lambda: {
                kind: self.stock_ledger.find_reason(reason_id) if reason_id else None
                for kind, reason_id in self.reason_ids.items()
            },
        )


def _line_field(index: int, name: str) -> str:
    return f"lineItems[{index}].{name}"


class MandatoryFieldsValidator(Validator):

    def validate(self, event):
        if not event.facility_id:
            return ValidationFailure("Facility is required", "facilityId")
        if not event.program_id:
            return ValidationFailure("Program is required", "programId")
        if not event.line_items:
            return ValidationFailure("At least one line item is required", "lineItems")
        for index, item in enumerate(event.line_items):
            for name, value in (
                ("orderableId", item.orderable_id),
                ("lotId", item.lot_id),
                ("prepackSize", item.prepack_size),
                ("numberOfPrepacks", item.number_of_prepacks),
            ):
                if value is None or value == "":
                    return ValidationFailure(
                        f"Line item {index + 1} is missing {name}", _line_field(index, name)
                    )
        return None


class ApprovedOrderableValidator(Validator):
    """Every bulk product must be approved for the facility type and program."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        facility = self.lookups.facility(event)
        program = self.lookups.program(event)
        if facility is None:
            return ValidationFailure(f"Facility {event.facility_id} not found", "facilityId")
        if program is None:
            return ValidationFailure(f"Program {event.program_id} not found", "programId")
        facility_type_code = (facility.get("type") or {}).get("code")

        checked = set()
        for index, item in enumerate(event.line_items):
            if item.orderable_id in checked:
                continue
            checked.add(item.orderable_id)
            approved = self.lookups.reference_data.find_approved_products(
                facility_type_code, program.get("code"), item.orderable_id
            )
            if not approved:
                return ValidationFailure(
                    f"Orderable {item.orderable_id} is not approved for facility type "
                    f"{facility_type_code} in program {program.get('code')}",
                    _line_field(index, "orderableId"),
                )
        return None


class FacilityProgramAssignmentValidator(Validator):
    """The facility that splits the stock must be assigned to the program."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        facility = self.lookups.facility(event)
        if facility is None:
            return ValidationFailure(f"Facility {event.facility_id} not found", "facilityId")
        if facility.get("active") is False:
            return ValidationFailure(f"Facility {event.facility_id} is not active", "facilityId")
        for support in facility.get("supportedPrograms") or []:
            if support.get("id") == event.program_id and support.get("supportActive", True):
                return None
        return ValidationFailure(
            f"Facility {event.facility_id} does not support program {event.program_id}",
            "programId",
        )


class GeographicZoneAffinityValidator(Validator):

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        facility = self.lookups.facility(event) or {}
        if not facility.get("geographicZone"):
            return ValidationFailure(
                f"Facility {event.facility_id} is not assigned to a geographic zone",
                "facilityId",
            )
        return None


class ReasonExistenceValidator(Validator):
    """The configured debit and credit reasons must exist in the stock ledger."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        for kind, reason in self.lookups.reasons(event).items():
            if reason is None:
                return ValidationFailure(
                    f"Prepacking {kind} reason {self.lookups.reason_ids.get(kind)} does not exist",
                    "reasonId",
                )
        return None


class DefaultAdjustmentReasonValidator(AdjustmentReasonValidator):

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        reasons = self.lookups.reasons(event)
        for kind, expected_type in (("debit", REASON_DEBIT), ("credit", REASON_CREDIT)):
            reason = reasons.get(kind) or {}
            if reason.get("reasonType") != expected_type:
                return ValidationFailure(
                    f"Prepacking {kind} reason must be of type {expected_type}, "
                    f"got {reason.get('reasonType')}",
                    "reasonId",
                )
        return None


class DefaultFreeTextValidator(FreeTextValidator):

    def validate(self, event):
        if event.comments and len(event.comments) > MAX_COMMENTS_LENGTH:
            return ValidationFailure(
                f"Comments must not exceed {MAX_COMMENTS_LENGTH} characters", "comments"
            )
        for index, item in enumerate(event.line_items):
            # remarks record authorization outcomes and are never submitted
            if item.remarks:
                return ValidationFailure(
                    f"Line item {index + 1} must not carry remarks", _line_field(index, "remarks")
                )
        return None


class QuantityValidator(Validator):

    def validate(self, event):
        for index, item in enumerate(event.line_items):
            for name, value in (
                ("prepackSize", item.prepack_size),
                ("numberOfPrepacks", item.number_of_prepacks),
            ):
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    return ValidationFailure(
                        f"Line item {index + 1}: {name} must be a positive whole number, got {value!r}",
                        _line_field(index, name),
                    )
        return None


class LotValidator(Validator):
    """Each lot must exist, be active and belong to the line item's product."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        for index, item in enumerate(event.line_items):
            lot = self.lookups.lot(event, item.lot_id)
            if lot is None:
                return ValidationFailure(
                    f"Lot {item.lot_id} not found", _line_field(index, "lotId")
                )
            if lot.get("active") is False:
                return ValidationFailure(
                    f"Lot {lot.get('lotCode')} is not active", _line_field(index, "lotId")
                )
            orderable = self.lookups.orderable(event, item.orderable_id)
            if orderable is None:
                return ValidationFailure(
                    f"Orderable {item.orderable_id} not found", _line_field(index, "orderableId")
                )
            trade_item_id = (orderable.get("identifiers") or {}).get("tradeItem")
            if trade_item_id and lot.get("tradeItemId") != trade_item_id:
                return ValidationFailure(
                    f"Lot {lot.get('lotCode')} does not belong to orderable {item.orderable_id}",
                    _line_field(index, "lotId"),
                )
        return None


class OrderableLotDuplicationValidator(Validator):

    def validate(self, event):
        seen = set()
        for index, item in enumerate(event.line_items):
            pair = (item.orderable_id, item.lot_id)
            if pair in seen:
                return ValidationFailure(
                    f"Orderable {item.orderable_id} with lot {item.lot_id} appears more than once",
                    _line_field(index, "lotId"),
                )
            seen.add(pair)
        return None


class PhysicalInventoryAdjustmentReasonsValidator(Validator):
    """Physical inventory reasons only apply to stock counts, never to a prepack."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        for kind, reason in self.lookups.reasons(event).items():
            if (reason or {}).get("reasonCategory") == PHYSICAL_INVENTORY_CATEGORY:
                return ValidationFailure(
                    f"Prepacking {kind} reason {reason.get('name')} is a physical inventory reason",
                    "reasonId",
                )
        return None


class VvmValidator(Validator):
    """Vaccine vial monitor status is only allowed on VVM-tracked products."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        for index, item in enumerate(event.line_items):
            vvm_status = (item.extra_data or {}).get("vvmStatus")
            if not vvm_status:
                continue
            orderable = self.lookups.orderable(event, item.orderable_id) or {}
            use_vvm = str((orderable.get("extraData") or {}).get("useVVM", "false")).lower()
            if use_vvm != "true":
                return ValidationFailure(
                    f"Orderable {item.orderable_id} does not track VVM status",
                    _line_field(index, "extraData.vvmStatus"),
                )
            if vvm_status in EXPIRED_VVM_STATUSES:
                return ValidationFailure(
                    f"Stock with VVM status {vvm_status} cannot be prepacked",
                    _line_field(index, "extraData.vvmStatus"),
                )
        return None


class DefaultUnpackKitValidator(UnpackKitValidator):
    """Kits are unpacked into their children, not split into prepacks."""

    def __init__(self, lookups: ReferenceLookups):
        self.lookups = lookups

    def validate(self, event):
        for index, item in enumerate(event.line_items):
            orderable = self.lookups.orderable(event, item.orderable_id) or {}
            if orderable.get("children"):
                return ValidationFailure(
                    f"Orderable {item.orderable_id} is a kit and cannot be prepacked",
                    _line_field(index, "orderableId"),
                )
        return None


class ValidationPipeline:
    """
    Runs every rule against an event, stopping at the first failure.

    Adjustment-reason, free-text and unpack-kit rules are looked up in the
    extension registry on each ``validate`` call, falling back to the
    built-in defaults.
    """

    def __init__(
        self,
        extensions: ExtensionRegistry,
        mandatory_fields: Validator,
        approved_orderable: Validator,
        facility_program_assignment: Validator,
        geographic_zone_affinity: Validator,
        reason_existence: Validator,
        default_adjustment_reason: AdjustmentReasonValidator,
        default_free_text: FreeTextValidator,
        quantity: Validator,
        lot: Validator,
        orderable_lot_duplication: Validator,
        physical_inventory_reasons: Validator,
        vvm: Validator,
        default_unpack_kit: UnpackKitValidator,
    ):
        self.extensions = extensions
        self.mandatory_fields = mandatory_fields
        self.approved_orderable = approved_orderable
        self.facility_program_assignment = facility_program_assignment
        self.geographic_zone_affinity = geographic_zone_affinity
        self.reason_existence = reason_existence
        self.default_adjustment_reason = default_adjustment_reason
        self.default_free_text = default_free_text
        self.quantity = quantity
        self.lot = lot
        self.orderable_lot_duplication = orderable_lot_duplication
        self.physical_inventory_reasons = physical_inventory_reasons
        self.vvm = vvm
        self.default_unpack_kit = default_unpack_kit

    @classmethod
    def default(
        cls,
        extensions: ExtensionRegistry,
        reference_data: AbstractReferenceDataClient,
        stock_ledger: AbstractStockLedgerClient,
        reason_ids: Dict[str, str],
    ) -> "ValidationPipeline":
        lookups = ReferenceLookups(reference_data, stock_ledger, reason_ids)
        return cls(
            extensions=extensions,
            mandatory_fields=MandatoryFieldsValidator(),
            approved_orderable=ApprovedOrderableValidator(lookups),
            facility_program_assignment=FacilityProgramAssignmentValidator(lookups),
            geographic_zone_affinity=GeographicZoneAffinityValidator(lookups),
            reason_existence=ReasonExistenceValidator(lookups),
            default_adjustment_reason=DefaultAdjustmentReasonValidator(lookups),
            default_free_text=DefaultFreeTextValidator(),
            quantity=QuantityValidator(),
            lot=LotValidator(lookups),
            orderable_lot_duplication=OrderableLotDuplicationValidator(),
            physical_inventory_reasons=PhysicalInventoryAdjustmentReasonsValidator(lookups),
            vvm=VvmValidator(lookups),
            default_unpack_kit=DefaultUnpackKitValidator(lookups),
        )

    def validators(self) -> List[Validator]:
        """The rules in execution order, with extension points resolved now."""
        return [
            self.mandatory_fields,
            self.approved_orderable,
            self.facility_program_assignment,
            self.geographic_zone_affinity,
            self.reason_existence,
            self.extensions.get_extension(
                ADJUSTMENT_REASON_POINT_ID, self.default_adjustment_reason
            ),
            self.extensions.get_extension(FREE_TEXT_POINT_ID, self.default_free_text),
            self.quantity,
            self.lot,
            self.orderable_lot_duplication,
            self.physical_inventory_reasons,
            self.vvm,
            self.extensions.get_extension(UNPACK_KIT_POINT_ID, self.default_unpack_kit),
        ]

    def validate(self, event: PrepackingEvent) -> None:
        """
        Raises:
            ValidationError: carrying the first failing rule's message
        """
        for validator in self.validators():
            failure = validator.validate(event)
            if failure is not None:
                logger.info(
                    f"Prepacking event {event.id} failed {type(validator).__name__}: {failure.message}"
                )
                raise ValidationError(failure.message, failure.field)
