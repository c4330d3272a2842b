"""Vendor service - Parts availability confirmations"""

import logging

from sqlalchemy.orm import Session

from ...errors import CaseValidationError, NotFoundError
from ...models import User, Vendor
from ...models_case import Case, VendorFulfillmentCommitment
from ...state_machine import CaseState
from ..cases import gates
from ..cases.service import CaseService, to_utc_naive
from .repository import VendorRepository
from .schemas import AvailabilityConfirm

logger = logging.getLogger(__name__)

REQUIRED_FIELDS_MESSAGE = "caseId, vendorId, sku, quantity, available (boolean), validUntil (ISO date) required"


class VendorService:
    """Service layer for vendor operations"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = VendorRepository()
        self.cases = CaseService(db)

    def list_vendors(self) -> list[Vendor]:
        return self.repo.get_vendors(self.db)

    def confirm_availability(
        self, data: AvailabilityConfirm, user: User
    ) -> tuple[VendorFulfillmentCommitment, Case]:
        """
        Record the vendor's fulfillment commitment and move the case
        DECISION_LOCKED → VENDOR_AVAIL_CONFIRMED.

        Called from the vendor side, so the case is looked up without an owner filter.
        """
        if (
            not data.caseId
            or not data.vendorId
            or not data.sku
            or data.quantity is None
            or data.available is None
            or data.validUntil is None
        ):
            raise CaseValidationError(REQUIRED_FIELDS_MESSAGE)
        if data.quantity < 1:
            raise CaseValidationError("quantity must be at least 1")
        if (
            data.leadTimeMinDays is not None
            and data.leadTimeMaxDays is not None
            and data.leadTimeMinDays > data.leadTimeMaxDays
        ):
            raise CaseValidationError("leadTimeMinDays must not exceed leadTimeMaxDays")

        with self.cases.transaction():
            case = self.cases.repo.get_case(self.db, data.caseId, for_update=True)
            if not case:
                raise NotFoundError("Case not found")
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.VENDOR_AVAIL_CONFIRMED,
                "Case must be in DECISION_LOCKED state to confirm vendor availability.",
            )
            vendor = self.cases.repo.get_vendor(self.db, data.vendorId)
            if not vendor:
                raise NotFoundError("Vendor not found", current_state=case.state)

            commitment = self.cases.repo.add_vendor_commitment(
                self.db,
                case,
                vendor_id=vendor.id,
                sku=data.sku,
                quantity=data.quantity,
                available=data.available,
                lead_time_min_days=data.leadTimeMinDays,
                lead_time_max_days=data.leadTimeMaxDays,
                service_level=data.serviceLevel,
                cutoff_time=to_utc_naive(data.cutoffTime) if data.cutoffTime else None,
                backorder_risk=bool(data.backorderRisk),
                valid_until=to_utc_naive(data.validUntil),
                confirmation_ref=data.confirmationRef,
            )
            self.cases.repo.set_state(self.db, case, CaseState.VENDOR_AVAIL_CONFIRMED)
            self.cases.record_transition(
                user.id,
                "case.vendor_availability_confirm",
                case,
                from_state,
                commitmentId=commitment.id,
                vendorId=vendor.id,
                sku=commitment.sku,
            )

        logger.info(f"🏭 Vendor {vendor.name} confirmed {commitment.quantity}x {commitment.sku} for case {case.id}")
        self.db.refresh(commitment)
        self.db.refresh(case)
        return commitment, case
