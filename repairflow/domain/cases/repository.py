"""
Case repository - Database operations for cases and their child records.

Writes are added and flushed but never committed here: each case operation
commits once in the service so the state change and its child records land
together.
"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import AuditLog, Shop, Vehicle, Vendor
from ...models_case import (
    Appointment,
    Case,
    CaseException,
    DecisionLock,
    DecisionReceipt,
    InstallWindow,
    VendorFulfillmentCommitment,
)
from ...models_shipment import Shipment  # noqa: F401 - registers Case.shipments target
from ...state_machine import CaseState


class CaseRepository:
    """Repository for case database operations"""

    @staticmethod
    def get_cases(db: Session, user_id: str, state: Optional[str] = None) -> list[Case]:
        """Get all cases for a user, newest activity first"""
        query = db.query(Case).filter(Case.user_id == user_id)
        if state:
            query = query.filter(Case.state == state)
        return query.order_by(Case.updated_at.desc()).all()

    @staticmethod
    def get_case_for_user(
        db: Session, case_id: str, user_id: str, for_update: bool = False
    ) -> Optional[Case]:
        """Get a case owned by user_id; for_update takes a row lock until commit"""
        query = db.query(Case).filter(Case.id == case_id, Case.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_case(db: Session, case_id: str, for_update: bool = False) -> Optional[Case]:
        """Get a case regardless of owner (vendor and carrier callers)"""
        query = db.query(Case).filter(Case.id == case_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_owned_vehicle(db: Session, vehicle_id: str, user_id: str) -> Optional[Vehicle]:
        return db.query(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.user_id == user_id).first()

    @staticmethod
    def get_approved_shop(db: Session, shop_id: str) -> Optional[Shop]:
        return db.query(Shop).filter(Shop.id == shop_id, Shop.status == "approved").first()

    @staticmethod
    def get_vendor(db: Session, vendor_id: str) -> Optional[Vendor]:
        return db.query(Vendor).filter(Vendor.id == vendor_id).first()

    @staticmethod
    def has_decision_lock(db: Session, case_id: str) -> bool:
        return (
            db.query(DecisionLock.id).filter(DecisionLock.case_id == case_id).first() is not None
        )

    @staticmethod
    def create_case(db: Session, user_id: str, vehicle_id: str, shop_id: str) -> Case:
        case = Case(
            user_id=user_id,
            vehicle_id=vehicle_id,
            shop_id=shop_id,
            state=CaseState.CASE_CREATED,
        )
        db.add(case)
        db.flush()
        return case

    @staticmethod
    def set_state(db: Session, case: Case, state: CaseState, **updates) -> Case:
        """Move the case to state and apply any other column updates"""
        case.state = state
        for key, value in updates.items():
            if hasattr(case, key):
                setattr(case, key, value)
        db.flush()
        return case

    @staticmethod
    def add_install_window(db: Session, case: Case, **window_data) -> InstallWindow:
        window = InstallWindow(case_id=case.id, **window_data)
        db.add(window)
        case.install_windows.append(window)
        db.flush()
        return window

    @staticmethod
    def add_decision_lock(db: Session, case: Case, **lock_data) -> DecisionLock:
        lock = DecisionLock(case_id=case.id, **lock_data)
        db.add(lock)
        case.decision_locks.append(lock)
        db.flush()
        return lock

    @staticmethod
    def add_decision_receipt(db: Session, case: Case, **receipt_data) -> DecisionReceipt:
        receipt = DecisionReceipt(case_id=case.id, **receipt_data)
        db.add(receipt)
        case.decision_receipts.append(receipt)
        db.flush()
        return receipt

    @staticmethod
    def add_vendor_commitment(db: Session, case: Case, **commitment_data) -> VendorFulfillmentCommitment:
        commitment = VendorFulfillmentCommitment(case_id=case.id, **commitment_data)
        db.add(commitment)
        case.vendor_commitments.append(commitment)
        db.flush()
        return commitment

    @staticmethod
    def add_appointment(db: Session, case: Case, **appointment_data) -> Appointment:
        appointment = Appointment(case_id=case.id, **appointment_data)
        db.add(appointment)
        case.appointments.append(appointment)
        db.flush()
        return appointment

    @staticmethod
    def add_exception(db: Session, case: Case, exception_type: str, payload: Optional[dict]) -> CaseException:
        exception = CaseException(case_id=case.id, type=exception_type, payload=payload)
        db.add(exception)
        case.exceptions.append(exception)
        db.flush()
        return exception

    @staticmethod
    def add_audit_log(
        db: Session,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: str,
        details: Optional[dict] = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
        )
        db.add(entry)
        db.flush()
        return entry
