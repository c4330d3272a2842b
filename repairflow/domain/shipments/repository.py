"""Shipment repository - Database operations for shipments and custody events"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models_case import Case
from ...models_shipment import CustodyEvent, Shipment
from ...state_machine import ShipmentState


class ShipmentRepository:
    """Repository for shipment database operations; flushes, never commits"""

    @staticmethod
    def get_shipment_for_user(
        db: Session, shipment_id: str, user_id: str, for_update: bool = False
    ) -> Optional[Shipment]:
        """Get a shipment whose case belongs to user_id"""
        query = (
            db.query(Shipment)
            .join(Case, Case.id == Shipment.case_id)
            .filter(Shipment.id == shipment_id, Case.user_id == user_id)
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def find_for_carrier(
        db: Session, shipment_id: Optional[str] = None, tracking_number: Optional[str] = None
    ) -> Optional[Shipment]:
        """Carrier callbacks identify the shipment by id or tracking number"""
        if shipment_id:
            return db.query(Shipment).filter(Shipment.id == shipment_id).first()
        if tracking_number:
            return (
                db.query(Shipment)
                .filter(Shipment.tracking_number == tracking_number)
                .order_by(Shipment.created_at.desc())
                .first()
            )
        return None

    @staticmethod
    def create_shipment(db: Session, case: Case, **shipment_data) -> Shipment:
        shipment = Shipment(case_id=case.id, state=ShipmentState.DRAFT.value, **shipment_data)
        db.add(shipment)
        case.shipments.append(shipment)
        db.flush()
        return shipment

    @staticmethod
    def update_shipment(db: Session, shipment: Shipment, **updates) -> Shipment:
        for key, value in updates.items():
            if value is not None and hasattr(shipment, key):
                setattr(shipment, key, value)
        db.flush()
        return shipment

    @staticmethod
    def set_state(db: Session, shipment: Shipment, state: ShipmentState) -> Shipment:
        shipment.state = state.value
        db.flush()
        return shipment

    @staticmethod
    def add_custody_event(db: Session, shipment: Shipment, **event_data) -> CustodyEvent:
        event = CustodyEvent(case_id=shipment.case_id, shipment_id=shipment.id, **event_data)
        db.add(event)
        shipment.custody_events.append(event)
        db.flush()
        return event
