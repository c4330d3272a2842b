"""Shipment domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from ...shared.schemas import CamelModel
from ..cases.schemas import CaseResponse


class ShipmentCreate(BaseModel):
    """Schema for creating a draft shipment"""

    trackingNumber: Optional[str] = None
    alertsEnabled: Optional[bool] = None
    carrierWebhookRegistered: Optional[bool] = None


class ShipmentUpdate(ShipmentCreate):
    """Schema for editing a draft shipment; unset fields are left alone"""


class CustodyEventCreate(BaseModel):
    custody: Optional[str] = None
    proofRef: Optional[str] = None
    declaredValue: Optional[float] = None
    insuranceRef: Optional[str] = None


class CarrierExceptionWebhook(BaseModel):
    """Carrier callback body; one of shipmentId or trackingNumber identifies the shipment"""

    shipmentId: Optional[str] = None
    trackingNumber: Optional[str] = None
    eventId: Optional[str] = None
    event: Optional[str] = None
    payload: Optional[Any] = None


class CustodyEventResponse(CamelModel):
    id: str
    case_id: str
    shipment_id: str
    custody: str
    proof_ref: Optional[str] = None
    declared_value: Optional[float] = None
    insurance_ref: Optional[str] = None
    created_at: Optional[datetime] = None


class ShipmentResponse(CamelModel):
    id: str
    case_id: str
    state: str
    tracking_number: Optional[str] = None
    alerts_enabled: bool
    carrier_webhook_registered: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShipmentDetailResponse(ShipmentResponse):
    custody_events: list[CustodyEventResponse] = []


class CarrierWebhookAck(BaseModel):
    success: bool = True
    message: str
    duplicate: bool = False


class ShipmentTransitionResponse(BaseModel):
    shipment: ShipmentResponse
    case: CaseResponse
