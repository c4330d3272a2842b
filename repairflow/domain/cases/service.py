"""Case service - Business logic for the case lifecycle"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import DEFAULT_PARTS_STRATEGY
from ...errors import CaseValidationError, ConflictError, NotFoundError
from ...models import User, utcnow
from ...models_case import Case, CaseException, DecisionLock, InstallWindow
from ...state_machine import (
    EXCEPTION_TYPES,
    CaseState,
    InstallWindowStatus,
    exception_state_for,
)
from . import decision_lock as hashing
from . import gates
from .repository import CaseRepository
from .schemas import (
    AppointmentLockRequest,
    CaseCreate,
    CaseExceptionCreate,
    DecisionLockCreate,
    InstallWindowAcceptance,
    InstallWindowProposal,
    VerifyRequest,
)

logger = logging.getLogger(__name__)

DECISION_LOCK_EXISTS_MESSAGE = (
    "This case already has a decision lock. "
    'Continue with the next step ("Vendor availability confirm").'
)


def to_utc_naive(value: datetime) -> datetime:
    """Store all timestamps as naive UTC"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CaseService:
    """Service layer for case state transitions"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CaseRepository()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, conflict_message: str = "The record was changed by another request. Retry."):
        """Commit once on success; roll back everything on any failure"""
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Integrity conflict, rolled back: {e.orig}")
            raise ConflictError(conflict_message) from e
        except Exception:
            self.db.rollback()
            raise

    def load_case(self, case_id: str, user: User, for_update: bool = False) -> Case:
        case = self.repo.get_case_for_user(self.db, case_id, user.id, for_update=for_update)
        if not case:
            raise NotFoundError("Case not found")
        return case

    def record_transition(
        self,
        user_id: Optional[str],
        action: str,
        case: Case,
        from_state: CaseState,
        **details,
    ) -> None:
        """Audit the transition inside the current transaction"""
        to_state = case.state
        self.repo.add_audit_log(
            self.db,
            user_id,
            action,
            "case",
            case.id,
            {"fromState": from_state.value, "toState": to_state.value, **details},
        )
        logger.info(f"✅ Case {case.id} transitioned: {from_state.value} → {to_state.value}")

    def _finish(self, case: Case) -> Case:
        self.db.refresh(case)
        return case

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def list_cases(self, user: User, state: Optional[str] = None) -> list[Case]:
        """Get all cases for a user, optionally filtered by state"""
        if state:
            try:
                state = CaseState(state).value
            except ValueError as e:
                raise CaseValidationError(f"Unknown case state: {state}") from e
        return self.repo.get_cases(self.db, user.id, state)

    def get_case(self, case_id: str, user: User) -> Case:
        return self.load_case(case_id, user)

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    def create_case(self, data: CaseCreate, user: User) -> Case:
        """Open a case in CASE_CREATED for an owned vehicle at an approved shop"""
        if not data.vehicleId or not data.shopId:
            raise CaseValidationError(
                "Vehicle and shop are required. Please select a vehicle and a shop."
            )

        with self.transaction():
            vehicle = self.repo.get_owned_vehicle(self.db, data.vehicleId, user.id)
            if not vehicle:
                raise CaseValidationError("Vehicle not found or does not belong to you.")
            shop = self.repo.get_approved_shop(self.db, data.shopId)
            if not shop:
                raise CaseValidationError("Shop not found or not available.")

            case = self.repo.create_case(self.db, user.id, vehicle.id, shop.id)
            self.repo.add_audit_log(
                self.db, user.id, "case.create", "case", case.id, {"toState": case.state.value}
            )

        logger.info(f"📝 Created case {case.id} for user {user.id} (shop {shop.id})")
        return self._finish(case)

    def start_decision_pause(self, case_id: str, user: User) -> Case:
        """CASE_CREATED → DECISION_PAUSE_ACTIVE: customer wants time before diagnosis starts"""
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.DECISION_PAUSE_ACTIVE,
                "A decision pause can only start on a newly created case.",
            )
            self.repo.set_state(self.db, case, CaseState.DECISION_PAUSE_ACTIVE)
            self.record_transition(user.id, "case.decision_pause", case, from_state)
        return self._finish(case)

    def verify(self, case_id: str, data: VerifyRequest, user: User) -> Case:
        """Start verification (→ VERIFYING) or finish it (verified=true → VERIFIED_WITH_UNKNOWNS)"""
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state

            if data.verified is True:
                next_state = CaseState.VERIFIED_WITH_UNKNOWNS
                gates.check_transition(
                    case,
                    next_state,
                    "Finish verification only after the shop has started the diagnostic.",
                )
            else:
                next_state = CaseState.VERIFYING
                gates.check_transition(
                    case,
                    next_state,
                    "You can only start verification when the case is newly created or paused for a decision.",
                )

            updates = {}
            if data.diagnosticSummary is not None:
                updates["diagnostic_summary"] = data.diagnosticSummary
            if data.recommendedParts is not None:
                updates["recommended_parts"] = data.recommendedParts
            if data.laborEstimateHours is not None:
                updates["labor_estimate_hours"] = data.laborEstimateHours

            self.repo.set_state(self.db, case, next_state, **updates)
            self.record_transition(user.id, "case.verify", case, from_state)
        return self._finish(case)

    def propose_install_window(
        self, case_id: str, data: InstallWindowProposal, user: User
    ) -> tuple[InstallWindow, Case]:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.INSTALL_WINDOW_PROPOSED,
                "An install window can only be proposed once verification is done.",
            )
            if not data.startAt or not data.endAt:
                raise CaseValidationError(
                    "startAt and endAt (ISO date strings) required", current_state=case.state
                )
            start_at = to_utc_naive(data.startAt)
            end_at = to_utc_naive(data.endAt)
            if end_at <= start_at:
                raise CaseValidationError("endAt must be after startAt", current_state=case.state)

            window = self.repo.add_install_window(
                self.db,
                case,
                start_at=start_at,
                end_at=end_at,
                status=InstallWindowStatus.PROPOSED.value,
            )
            self.repo.set_state(self.db, case, CaseState.INSTALL_WINDOW_PROPOSED)
            self.record_transition(
                user.id, "case.install_window.propose", case, from_state, installWindowId=window.id
            )

        self.db.refresh(window)
        return window, self._finish(case)

    def accept_install_window(self, case_id: str, data: InstallWindowAcceptance, user: User) -> Case:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.INSTALL_WINDOW_ACCEPTED,
                "You can only accept an install window after the shop has proposed one.",
            )
            if not data.installWindowId:
                raise CaseValidationError(
                    'Run "Propose install window" first. After it completes, run "Accept install window" '
                    "with the installWindowId it returned.",
                    current_state=case.state,
                )
            window = next((w for w in case.install_windows if w.id == data.installWindowId), None)
            if not window or window.status != InstallWindowStatus.PROPOSED.value:
                raise NotFoundError("Install window not found or not proposed", current_state=case.state)

            window.status = InstallWindowStatus.ACCEPTED.value
            window.accepted_at = utcnow()
            self.repo.set_state(self.db, case, CaseState.INSTALL_WINDOW_ACCEPTED)
            self.record_transition(
                user.id, "case.install_window.accept", case, from_state, installWindowId=window.id
            )
        return self._finish(case)

    def create_decision_lock(
        self,
        case_id: str,
        data: DecisionLockCreate,
        user: User,
        client_ip: Optional[str] = None,
        device_info: Optional[str] = None,
    ) -> Case:
        """
        Freeze verified facts, unknowns, risks and consent into a hashed decision
        lock plus its customer-facing receipt, and move the case to DECISION_LOCKED.

        client_ip / device_info are request fallbacks used when the body omits them.
        At most one lock per case: the existence check gives a friendly Conflict,
        the unique constraint on case_id catches concurrent writers.
        """
        with self.transaction(conflict_message=DECISION_LOCK_EXISTS_MESSAGE):
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state

            if case.decision_locks or self.repo.has_decision_lock(self.db, case.id):
                raise ConflictError(DECISION_LOCK_EXISTS_MESSAGE, current_state=case.state)
            gates.check_can_create_decision_lock(case)

            if data.consentData is None or data.consentData is False:
                raise CaseValidationError(
                    "verifiedFacts, unknowns, remainingRisks, consentData, installWindowStart, "
                    "installWindowEnd required",
                    current_state=case.state,
                )

            lock_payload = hashing.build_decision_lock_payload(
                verified_facts=data.verifiedFacts,
                unknowns=data.unknowns,
                remaining_risks=data.remainingRisks,
                install_window_start=to_utc_naive(data.installWindowStart),
                install_window_end=to_utc_naive(data.installWindowEnd),
                consent_data=data.consentData,
                parts_strategy=data.partsStrategy or DEFAULT_PARTS_STRATEGY,
                client_ip=data.clientIp or client_ip,
                device_info=data.deviceInfo or device_info,
                version=data.version,
            )
            lock_hash = hashing.compute_audit_hash(lock_payload)

            lock = self.repo.add_decision_lock(
                self.db,
                case,
                verified_facts=lock_payload["verifiedFacts"],
                unknowns=lock_payload["unknowns"],
                remaining_risks=lock_payload["remainingRisks"],
                install_window_start=lock_payload["installWindowStart"],
                install_window_end=lock_payload["installWindowEnd"],
                consent_data=lock_payload["consentData"],
                parts_strategy=lock_payload["partsStrategy"],
                client_ip=lock_payload["clientIp"],
                device_info=lock_payload["deviceInfo"],
                version=lock_payload["version"],
                audit_hash=lock_hash,
            )

            receipt_payload = hashing.build_receipt_payload(lock_payload, data.legalRefs)
            receipt = self.repo.add_decision_receipt(
                self.db,
                case,
                decision_lock_id=lock.id,
                verified_facts=receipt_payload["verifiedFacts"],
                risks_accepted=receipt_payload["risksAccepted"],
                unknowns=receipt_payload["unknowns"],
                timing_plan=hashing.serialize_timing_plan(receipt_payload),
                legal_refs=receipt_payload["legalRefs"],
                audit_hash=hashing.compute_receipt_hash(receipt_payload, lock.id),
            )

            self.repo.set_state(self.db, case, CaseState.DECISION_LOCKED)
            self.record_transition(
                user.id,
                "case.decision_lock",
                case,
                from_state,
                decisionLockId=lock.id,
                auditHash=lock_hash,
                receiptHash=receipt.audit_hash,
            )

        logger.info(f"🔒 Decision lock {lock.id} created for case {case.id} (hash {lock_hash[:12]}…)")
        return self._finish(case)

    def verify_decision_lock(self, case_id: str, user: User) -> tuple[DecisionLock, bool, Optional[bool]]:
        """Re-hash the stored decision lock and receipt and compare with their audit hashes"""
        case = self.load_case(case_id, user)
        if not case.decision_locks:
            raise NotFoundError("This case has no decision lock yet.", current_state=case.state)
        lock = case.decision_locks[0]
        lock_valid = hashing.verify_decision_lock(lock)
        receipt_valid = hashing.verify_decision_receipt(lock.receipt) if lock.receipt else None
        if not lock_valid or receipt_valid is False:
            logger.error(
                f"❌ Decision lock {lock.id} on case {case.id} failed hash verification "
                f"(lock={lock_valid}, receipt={receipt_valid})"
            )
        return lock, lock_valid, receipt_valid

    def confirm_shop_window(self, case_id: str, user: User) -> Case:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.SHOP_WINDOW_CONFIRMED,
                "Parts vendor must confirm availability before the shop can confirm its window.",
            )
            self.repo.set_state(self.db, case, CaseState.SHOP_WINDOW_CONFIRMED)
            self.record_transition(user.id, "case.shop_window_confirm", case, from_state)
        return self._finish(case)

    def lock_appointment(self, case_id: str, data: AppointmentLockRequest, user: User):
        """Create the locked appointment referencing the case's decision lock"""
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_can_lock_appointment(case)

            if not data.slotStart or not data.slotEnd:
                raise CaseValidationError(
                    "slotStart and slotEnd (ISO dates) required", current_state=case.state
                )
            slot_start = to_utc_naive(data.slotStart)
            slot_end = to_utc_naive(data.slotEnd)
            if slot_end <= slot_start:
                raise CaseValidationError("slotEnd must be after slotStart", current_state=case.state)
            if not case.shop_id:
                raise CaseValidationError("Case has no shop assigned", current_state=case.state)

            appointment = self.repo.add_appointment(
                self.db,
                case,
                shop_id=case.shop_id,
                decision_lock_id=case.decision_locks[0].id,
                slot_start=slot_start,
                slot_end=slot_end,
                status="locked",
            )
            self.repo.set_state(self.db, case, CaseState.SHOP_APPOINTMENT_LOCKED)
            self.record_transition(
                user.id, "case.appointment_lock", case, from_state, appointmentId=appointment.id
            )

        self.db.refresh(appointment)
        return appointment, self._finish(case)

    def start_install(self, case_id: str, user: User) -> Case:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_can_start_install(case)
            self.repo.set_state(self.db, case, CaseState.INSTALL_IN_PROGRESS)
            self.record_transition(user.id, "case.install_start", case, from_state)
        return self._finish(case)

    def complete_install(self, case_id: str, user: User) -> Case:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.INSTALLED,
                "The shop must have started the install before you can complete it.",
            )
            self.repo.set_state(self.db, case, CaseState.INSTALLED)
            self.record_transition(user.id, "case.install_complete", case, from_state)
        return self._finish(case)

    def post_confirmation(self, case_id: str, user: User) -> Case:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            from_state = case.state
            gates.check_transition(
                case,
                CaseState.POST_CONFIRMATION_COMPLETE,
                "Install must be completed before post-confirmation.",
            )
            self.repo.set_state(
                self.db, case, CaseState.POST_CONFIRMATION_COMPLETE, completed_at=utcnow()
            )
            self.record_transition(user.id, "case.post_confirmation", case, from_state)
        return self._finish(case)

    # ------------------------------------------------------------------
    # exception side channel
    # ------------------------------------------------------------------

    def raise_exception(
        self,
        case: Case,
        exception_type: Optional[str],
        payload: Optional[dict],
        user_id: Optional[str],
    ) -> CaseException:
        """
        Record an exception and move the case to EXCEPTION_<type>.

        Never gated on case state. Runs inside the caller's transaction; prior
        child records are left untouched.
        """
        if not exception_type or exception_type not in EXCEPTION_TYPES:
            raise CaseValidationError(
                f"type must be one of: {', '.join(EXCEPTION_TYPES)}", current_state=case.state
            )
        from_state = case.state
        exception = self.repo.add_exception(self.db, case, exception_type, payload)
        self.repo.set_state(self.db, case, exception_state_for(exception_type))
        self.record_transition(
            user_id, "case.exception", case, from_state, exceptionId=exception.id, type=exception_type
        )
        logger.warning(f"🚨 Case {case.id} exception recorded: {exception_type}")
        return exception

    def create_exception(
        self, case_id: str, data: CaseExceptionCreate, user: User
    ) -> tuple[CaseException, Case]:
        with self.transaction():
            case = self.load_case(case_id, user, for_update=True)
            exception = self.raise_exception(case, data.type, data.payload, user.id)

        self.db.refresh(exception)
        return exception, self._finish(case)
