"""Vendor domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ...shared.schemas import CamelModel
from ..cases.schemas import CaseResponse, VendorCommitmentResponse


class AvailabilityConfirm(BaseModel):
    """Vendor's confirmation that a SKU can be fulfilled for a case"""

    caseId: Optional[str] = None
    vendorId: Optional[str] = None
    sku: Optional[str] = None
    quantity: Optional[int] = None
    available: Optional[bool] = None
    leadTimeMinDays: Optional[int] = None
    leadTimeMaxDays: Optional[int] = None
    serviceLevel: Optional[str] = None
    cutoffTime: Optional[datetime] = None
    backorderRisk: Optional[bool] = None
    validUntil: Optional[datetime] = None
    confirmationRef: Optional[str] = None


class VendorResponse(CamelModel):
    id: str
    name: str
    created_at: Optional[datetime] = None


class AvailabilityConfirmResponse(BaseModel):
    commitment: VendorCommitmentResponse
    case: CaseResponse
