"""
Case aggregate models: the repair case and the child records its workflow creates
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_public_id, utcnow
from .state_machine import CaseState, InstallWindowStatus


class Case(Base):
    """One repair engagement between one customer, one vehicle and one shop"""

    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey("vehicles.id"), nullable=False)
    shop_id = Column(String(36), ForeignKey("shops.id"), nullable=True)

    # Mutated only through CaseService / ShipmentService / VendorService operations
    state = Column(
        Enum(CaseState, native_enum=False, length=64, validate_strings=True),
        default=CaseState.CASE_CREATED,
        nullable=False,
        index=True,
    )

    # Diagnostic output captured during verification
    diagnostic_summary = Column(Text, nullable=True)
    recommended_parts = Column(JSON, nullable=True)
    labor_estimate_hours = Column(Float, nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship("User", back_populates="cases")
    vehicle = relationship("Vehicle")
    shop = relationship("Shop")

    install_windows = relationship(
        "InstallWindow", back_populates="case", lazy="selectin", order_by="InstallWindow.created_at"
    )
    decision_locks = relationship(
        "DecisionLock", back_populates="case", lazy="selectin", order_by="DecisionLock.created_at"
    )
    decision_receipts = relationship(
        "DecisionReceipt", back_populates="case", lazy="selectin", order_by="DecisionReceipt.created_at"
    )
    vendor_commitments = relationship(
        "VendorFulfillmentCommitment",
        back_populates="case",
        lazy="selectin",
        order_by="VendorFulfillmentCommitment.created_at",
    )
    appointments = relationship(
        "Appointment", back_populates="case", lazy="selectin", order_by="Appointment.created_at"
    )
    shipments = relationship(
        "Shipment", back_populates="case", lazy="selectin", order_by="Shipment.created_at"
    )
    exceptions = relationship(
        "CaseException", back_populates="case", lazy="selectin", order_by="CaseException.created_at"
    )


class InstallWindow(Base):
    """Proposed or accepted time range for the install"""

    __tablename__ = "install_windows"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    # proposed → accepted
    status = Column(String(20), default=InstallWindowStatus.PROPOSED.value, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    case = relationship("Case", back_populates="install_windows")


class DecisionLock(Base):
    """
    Immutable, hashed snapshot of verified facts, risks and consent taken when
    the customer commits to the repair. There is no update path for this table.
    """

    __tablename__ = "decision_locks"
    __table_args__ = (UniqueConstraint("case_id", name="uq_decision_locks_case_id"),)

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    verified_facts = Column(JSON, nullable=False)
    unknowns = Column(JSON, nullable=False)
    remaining_risks = Column(JSON, nullable=False)
    install_window_start = Column(DateTime, nullable=False)
    install_window_end = Column(DateTime, nullable=False)
    consent_data = Column(JSON, nullable=False)
    parts_strategy = Column(String(100), nullable=False)
    client_ip = Column(String(64), nullable=True)
    device_info = Column(String(500), nullable=True)
    version = Column(String(50), nullable=True)
    audit_hash = Column(String(64), nullable=False)  # SHA-256 hex of the canonical payload
    created_at = Column(DateTime, default=utcnow)

    case = relationship("Case", back_populates="decision_locks")
    receipt = relationship("DecisionReceipt", back_populates="decision_lock", uselist=False)


class DecisionReceipt(Base):
    """Customer-facing summary of a decision lock, hashed independently"""

    __tablename__ = "decision_receipts"
    __table_args__ = (UniqueConstraint("decision_lock_id", name="uq_decision_receipts_lock_id"),)

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    decision_lock_id = Column(String(36), ForeignKey("decision_locks.id"), nullable=False)
    verified_facts = Column(JSON, nullable=False)
    risks_accepted = Column(JSON, nullable=False)
    unknowns = Column(JSON, nullable=False)
    timing_plan = Column(JSON, nullable=False)  # {installWindowStart, installWindowEnd}
    legal_refs = Column(JSON, nullable=True)
    audit_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    case = relationship("Case", back_populates="decision_receipts")
    decision_lock = relationship("DecisionLock", back_populates="receipt")


class VendorFulfillmentCommitment(Base):
    """A parts vendor's promise for a SKU and quantity"""

    __tablename__ = "vendor_fulfillment_commitments"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False)
    sku = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    available = Column(Boolean, nullable=False)
    lead_time_min_days = Column(Integer, nullable=True)
    lead_time_max_days = Column(Integer, nullable=True)
    service_level = Column(String(50), nullable=True)
    cutoff_time = Column(DateTime, nullable=True)
    backorder_risk = Column(Boolean, default=False, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    confirmation_ref = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    case = relationship("Case", back_populates="vendor_commitments")
    vendor = relationship("Vendor")


class Appointment(Base):
    """Locked shop time slot"""

    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    shop_id = Column(String(36), ForeignKey("shops.id"), nullable=False)
    # Back-reference only; the lock belongs to the case
    decision_lock_id = Column(String(36), ForeignKey("decision_locks.id"), nullable=True)
    slot_start = Column(DateTime, nullable=False)
    slot_end = Column(DateTime, nullable=False)
    status = Column(String(20), default="locked", nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    case = relationship("Case", back_populates="appointments")


class CaseException(Base):
    """Append-only out-of-band event; the case moves to EXCEPTION_<type> alongside it"""

    __tablename__ = "case_exceptions"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    case = relationship("Case", back_populates="exceptions")
