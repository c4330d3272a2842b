"""Case domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from ...shared.schemas import CamelModel
from ...state_machine import CaseState

# ============================================================================
# REQUESTS
# ============================================================================


class CaseCreate(BaseModel):
    """Schema for opening a case on an owned vehicle at an approved shop"""

    vehicleId: Optional[str] = None
    shopId: Optional[str] = None


class VerifyRequest(BaseModel):
    """verified=true finishes verification; anything else starts it"""

    verified: Optional[bool] = None
    diagnosticSummary: Optional[str] = None
    recommendedParts: Optional[Any] = None
    laborEstimateHours: Optional[float] = None


class InstallWindowProposal(BaseModel):
    startAt: Optional[datetime] = None
    endAt: Optional[datetime] = None


class InstallWindowAcceptance(BaseModel):
    installWindowId: Optional[str] = None


class DecisionLockCreate(BaseModel):
    """
    Facts, risks and consent frozen at the moment procurement begins.

    The three lists are required; empty lists are accepted and are the
    caller's responsibility.
    """

    verifiedFacts: list[Any]
    unknowns: list[Any]
    remainingRisks: list[Any]
    installWindowStart: datetime
    installWindowEnd: datetime
    consentData: Optional[Any] = None  # object, or a boolean wrapped as {"accepted": bool}
    partsStrategy: Optional[str] = None
    clientIp: Optional[str] = None
    deviceInfo: Optional[str] = None
    version: Optional[str] = None
    legalRefs: Optional[Any] = None


class AppointmentLockRequest(BaseModel):
    slotStart: Optional[datetime] = None
    slotEnd: Optional[datetime] = None


class CaseExceptionCreate(BaseModel):
    type: Optional[str] = None
    payload: Optional[dict[str, Any]] = None


# ============================================================================
# RESPONSES
# ============================================================================


class InstallWindowResponse(CamelModel):
    id: str
    case_id: str
    start_at: datetime
    end_at: datetime
    status: str
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DecisionLockResponse(CamelModel):
    id: str
    case_id: str
    verified_facts: list[Any]
    unknowns: list[Any]
    remaining_risks: list[Any]
    install_window_start: datetime
    install_window_end: datetime
    consent_data: dict[str, Any]
    parts_strategy: str
    client_ip: Optional[str] = None
    device_info: Optional[str] = None
    version: Optional[str] = None
    audit_hash: str
    created_at: Optional[datetime] = None


class DecisionReceiptResponse(CamelModel):
    id: str
    case_id: str
    decision_lock_id: str
    verified_facts: list[Any]
    risks_accepted: list[Any]
    unknowns: list[Any]
    timing_plan: dict[str, Any]
    legal_refs: Optional[Any] = None
    audit_hash: str
    created_at: Optional[datetime] = None


class VendorCommitmentResponse(CamelModel):
    id: str
    case_id: str
    vendor_id: str
    sku: str
    quantity: int
    available: bool
    lead_time_min_days: Optional[int] = None
    lead_time_max_days: Optional[int] = None
    service_level: Optional[str] = None
    cutoff_time: Optional[datetime] = None
    backorder_risk: bool
    valid_until: datetime
    confirmation_ref: Optional[str] = None
    created_at: Optional[datetime] = None


class AppointmentResponse(CamelModel):
    id: str
    case_id: str
    shop_id: str
    decision_lock_id: Optional[str] = None
    slot_start: datetime
    slot_end: datetime
    status: str
    created_at: Optional[datetime] = None


class ShipmentSummary(CamelModel):
    id: str
    state: str
    tracking_number: Optional[str] = None
    alerts_enabled: bool
    carrier_webhook_registered: bool


class CaseExceptionResponse(CamelModel):
    id: str
    case_id: str
    type: str
    payload: Optional[Any] = None
    created_at: Optional[datetime] = None


class CaseSummaryResponse(CamelModel):
    id: str
    user_id: str
    vehicle_id: str
    shop_id: Optional[str] = None
    state: CaseState
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CaseResponse(CaseSummaryResponse):
    """Case aggregate with all child records"""

    diagnostic_summary: Optional[str] = None
    recommended_parts: Optional[Any] = None
    labor_estimate_hours: Optional[float] = None
    install_windows: list[InstallWindowResponse] = []
    decision_locks: list[DecisionLockResponse] = []
    decision_receipts: list[DecisionReceiptResponse] = []
    vendor_commitments: list[VendorCommitmentResponse] = []
    appointments: list[AppointmentResponse] = []
    shipments: list[ShipmentSummary] = []
    exceptions: list[CaseExceptionResponse] = []


class InstallWindowProposalResponse(BaseModel):
    installWindow: InstallWindowResponse
    case: CaseResponse


class AppointmentLockResponse(BaseModel):
    appointment: AppointmentResponse
    case: CaseResponse


class CaseExceptionCreatedResponse(BaseModel):
    exception: CaseExceptionResponse
    case: CaseResponse


class DecisionLockVerification(BaseModel):
    decisionLockId: str
    lockHashValid: bool
    receiptHashValid: Optional[bool] = None
