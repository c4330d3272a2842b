"""Shipment service - Business logic for the parts shipping phase"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import CaseValidationError, NotFoundError
from ...idempotency import carrier_event_dedup
from ...models import User, utcnow
from ...models_case import Case, CaseException
from ...models_shipment import CustodyEvent, Shipment
from ...state_machine import CUSTODY_TYPES, CaseState, ExceptionType, ShipmentState
from ..cases import gates
from ..cases.decision_lock import to_canonical_timestamp
from ..cases.service import CaseService
from .repository import ShipmentRepository
from .schemas import CarrierExceptionWebhook, CustodyEventCreate, ShipmentCreate, ShipmentUpdate

logger = logging.getLogger(__name__)


class ShipmentService:
    """Service layer for shipments; case state moves through CaseService helpers"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ShipmentRepository()
        self.cases = CaseService(db)

    def load_shipment(self, shipment_id: str, user: User, for_update: bool = False) -> Shipment:
        shipment = self.repo.get_shipment_for_user(self.db, shipment_id, user.id, for_update=for_update)
        if not shipment:
            raise NotFoundError("Shipment not found")
        return shipment

    def _record_shipment(
        self, user_id: Optional[str], action: str, shipment: Shipment, from_state: Optional[str], **details
    ) -> None:
        self.cases.repo.add_audit_log(
            self.db,
            user_id,
            action,
            "shipment",
            shipment.id,
            {"caseId": shipment.case_id, "fromState": from_state, "toState": shipment.state, **details},
        )
        if from_state != shipment.state:
            logger.info(f"📦 Shipment {shipment.id} moved: {from_state} → {shipment.state}")

    def _move_case(self, case: Case, target: CaseState, user_id: str, action: str, shipment: Shipment) -> None:
        from_state = case.state
        self.cases.repo.set_state(self.db, case, target)
        self.cases.record_transition(user_id, action, case, from_state, shipmentId=shipment.id)

    def _finish(self, shipment: Shipment, case: Case) -> tuple[Shipment, Case]:
        self.db.refresh(shipment)
        self.db.refresh(case)
        return shipment, case

    # ------------------------------------------------------------------
    # drafts
    # ------------------------------------------------------------------

    def get_shipment(self, shipment_id: str, user: User) -> Shipment:
        return self.load_shipment(shipment_id, user)

    def create_shipment(self, case_id: str, data: ShipmentCreate, user: User) -> Shipment:
        """Create a draft shipment; only while the shop appointment is locked"""
        with self.cases.transaction():
            case = self.cases.load_case(case_id, user, for_update=True)
            gates.check_state_in(
                case,
                (CaseState.SHOP_APPOINTMENT_LOCKED,),
                "Shipments can only be created once the shop appointment is locked.",
            )
            shipment = self.repo.create_shipment(
                self.db,
                case,
                tracking_number=data.trackingNumber,
                alerts_enabled=bool(data.alertsEnabled),
                carrier_webhook_registered=bool(data.carrierWebhookRegistered),
            )
            self._record_shipment(user.id, "shipment.create", shipment, None)

        logger.info(f"📦 Created draft shipment {shipment.id} for case {case.id}")
        self.db.refresh(shipment)
        return shipment

    def update_shipment(self, shipment_id: str, data: ShipmentUpdate, user: User) -> Shipment:
        """Edit trigger prerequisites on a draft; unset fields are left alone"""
        with self.cases.transaction():
            shipment = self.load_shipment(shipment_id, user, for_update=True)
            if shipment.state != ShipmentState.DRAFT.value:
                raise CaseValidationError(
                    f'Only draft shipments can be edited. Shipment is currently in "{shipment.state}".',
                    current_state=shipment.state,
                )
            self.repo.update_shipment(
                self.db,
                shipment,
                tracking_number=data.trackingNumber,
                alerts_enabled=data.alertsEnabled,
                carrier_webhook_registered=data.carrierWebhookRegistered,
            )
            self._record_shipment(
                user.id,
                "shipment.update",
                shipment,
                shipment.state,
                changes=data.model_dump(exclude_none=True),
            )

        self.db.refresh(shipment)
        return shipment

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    def trigger(self, shipment_id: str, user: User) -> tuple[Shipment, Case]:
        """Draft → SHIP_TRIGGERED; the case moves SHOP_APPOINTMENT_LOCKED → SHIP_TRIGGERED"""
        with self.cases.transaction():
            shipment = self.load_shipment(shipment_id, user, for_update=True)
            case = self.cases.load_case(shipment.case_id, user, for_update=True)
            gates.check_can_trigger_shipment(shipment)
            gates.check_transition(
                case,
                CaseState.SHIP_TRIGGERED,
                "Shipments can only be triggered once the shop appointment is locked.",
            )

            from_state = shipment.state
            self.repo.set_state(self.db, shipment, ShipmentState.SHIP_TRIGGERED)
            self._record_shipment(user.id, "shipment.trigger", shipment, from_state)
            self._move_case(case, CaseState.SHIP_TRIGGERED, user.id, "case.ship_trigger", shipment)

        return self._finish(shipment, case)

    def set_in_transit(self, shipment_id: str, user: User) -> tuple[Shipment, Case]:
        """SHIP_TRIGGERED → IN_TRANSIT; the case follows only from SHIP_TRIGGERED"""
        with self.cases.transaction():
            shipment = self.load_shipment(shipment_id, user, for_update=True)
            case = self.cases.load_case(shipment.case_id, user, for_update=True)
            gates.check_shipment_state(
                shipment,
                ShipmentState.SHIP_TRIGGERED,
                "Shipment must be triggered before it can go in transit.",
                "Trigger shipment",
            )

            from_state = shipment.state
            self.repo.set_state(self.db, shipment, ShipmentState.IN_TRANSIT)
            self._record_shipment(user.id, "shipment.in_transit", shipment, from_state)
            # Exception states are absorbing
            if case.state == CaseState.SHIP_TRIGGERED:
                self._move_case(case, CaseState.IN_TRANSIT, user.id, "case.in_transit", shipment)

        return self._finish(shipment, case)

    def set_delivered(self, shipment_id: str, user: User) -> tuple[Shipment, Case]:
        """
        IN_TRANSIT → DELIVERED for the shipment, and the case moves to DELIVERED
        from SHIP_TRIGGERED or IN_TRANSIT. An exception state is left alone since
        exception states are absorbing.
        """
        with self.cases.transaction():
            shipment = self.load_shipment(shipment_id, user, for_update=True)
            case = self.cases.load_case(shipment.case_id, user, for_update=True)
            gates.check_shipment_state(
                shipment,
                ShipmentState.IN_TRANSIT,
                "Shipment must be in transit before it can be marked delivered.",
                "Shipment in transit",
            )

            from_state = shipment.state
            self.repo.set_state(self.db, shipment, ShipmentState.DELIVERED)
            self._record_shipment(user.id, "shipment.delivered", shipment, from_state)
            if case.state in (CaseState.SHIP_TRIGGERED, CaseState.IN_TRANSIT):
                self._move_case(case, CaseState.DELIVERED, user.id, "case.delivered", shipment)
            elif case.state != CaseState.DELIVERED:
                logger.warning(
                    f"⚠️ Shipment {shipment.id} delivered while case {case.id} is in {case.state.value}; "
                    "case state left unchanged"
                )

        return self._finish(shipment, case)

    def add_custody_event(self, shipment_id: str, data: CustodyEventCreate, user: User) -> CustodyEvent:
        """Append a chain-of-custody marker; no state effect"""
        if not data.custody or data.custody not in CUSTODY_TYPES:
            raise CaseValidationError(f"custody must be one of: {', '.join(CUSTODY_TYPES)}")

        with self.cases.transaction():
            shipment = self.load_shipment(shipment_id, user, for_update=True)
            event = self.repo.add_custody_event(
                self.db,
                shipment,
                custody=data.custody,
                proof_ref=data.proofRef,
                declared_value=data.declaredValue,
                insurance_ref=data.insuranceRef,
            )
            self._record_shipment(
                user.id, "shipment.custody", shipment, shipment.state, custodyEventId=event.id, custody=event.custody
            )

        logger.info(f"🔗 Custody event {event.custody} recorded on shipment {shipment.id}")
        self.db.refresh(event)
        return event

    # ------------------------------------------------------------------
    # carrier callbacks
    # ------------------------------------------------------------------

    def record_carrier_exception(self, data: CarrierExceptionWebhook) -> Optional[CaseException]:
        """
        Record a CARRIER_EXCEPTION on the shipment's case.

        Returns None for a replay of an already-seen eventId. The claim is
        released again when recording fails so the carrier's retry goes through.
        """
        if not data.shipmentId and not data.trackingNumber:
            raise CaseValidationError("shipmentId or trackingNumber required")

        if data.eventId and not carrier_event_dedup.claim(data.eventId):
            logger.info(f"🔁 Duplicate carrier event {data.eventId} ignored")
            return None

        try:
            with self.cases.transaction():
                shipment = self.repo.find_for_carrier(self.db, data.shipmentId, data.trackingNumber)
                if not shipment:
                    raise NotFoundError("Shipment not found")
                case = self.cases.repo.get_case(self.db, shipment.case_id, for_update=True)
                payload = {
                    "event": data.event,
                    "payload": data.payload,
                    "receivedAt": to_canonical_timestamp(utcnow()),
                    "shipmentId": shipment.id,
                }
                if data.eventId:
                    payload["eventId"] = data.eventId
                exception = self.cases.raise_exception(
                    case, ExceptionType.CARRIER_EXCEPTION.value, payload, user_id=None
                )
        except Exception:
            if data.eventId:
                carrier_event_dedup.release(data.eventId)
            raise

        logger.warning(f"🚚 Carrier exception recorded for shipment {shipment.id} on case {case.id}")
        self.db.refresh(exception)
        return exception
