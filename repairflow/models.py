import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


def utcnow():
    """Naive UTC timestamp with microseconds, used where creation order matters"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(50), default="customer", nullable=False)  # customer, shop, vendor, admin
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    vehicles = relationship("Vehicle", back_populates="owner")
    cases = relationship("Case", back_populates="customer")


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    vin = Column(String(17), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="vehicles")


class Shop(Base):
    __tablename__ = "shops"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    # pending → approved → suspended; only approved shops can take new cases
    status = Column(String(50), default="pending", nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class AuditLog(Base):
    """Append-only record of every state-changing case operation"""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String(100), nullable=False)  # e.g. case.verify, shipment.trigger
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(36), nullable=True, index=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
