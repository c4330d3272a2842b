"""
Parts logistics models: shipments and their chain-of-custody events
"""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import relationship

from .database import Base
from .models import generate_public_id, utcnow
from .state_machine import ShipmentState


class Shipment(Base):
    """Parts shipment for a case; a case may have several"""

    __tablename__ = "shipments"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)

    # Status workflow: draft → SHIP_TRIGGERED → IN_TRANSIT → DELIVERED
    state = Column(String(20), default=ShipmentState.DRAFT.value, nullable=False, index=True)

    # Trigger preconditions
    tracking_number = Column(String(100), nullable=True, index=True)
    alerts_enabled = Column(Boolean, default=False, nullable=False)
    carrier_webhook_registered = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    case = relationship("Case", back_populates="shipments")
    custody_events = relationship(
        "CustodyEvent", back_populates="shipment", lazy="selectin", order_by="CustodyEvent.created_at"
    )


class CustodyEvent(Base):
    """
    Chain-of-custody marker (SUPPLIER → CARRIER → SHOP → CUSTOMER).
    Informational only; never gates a transition.
    """

    __tablename__ = "custody_events"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    shipment_id = Column(String(36), ForeignKey("shipments.id"), nullable=False, index=True)
    custody = Column(String(30), nullable=False)
    proof_ref = Column(String(255), nullable=True)
    declared_value = Column(Float, nullable=True)
    insurance_ref = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    shipment = relationship("Shipment", back_populates="custody_events")
