"""Case router - FastAPI endpoints for the case lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ..shipments.schemas import ShipmentCreate, ShipmentResponse
from ..shipments.service import ShipmentService
from .schemas import (
    AppointmentLockRequest,
    AppointmentLockResponse,
    AppointmentResponse,
    CaseCreate,
    CaseExceptionCreate,
    CaseExceptionCreatedResponse,
    CaseExceptionResponse,
    CaseResponse,
    CaseSummaryResponse,
    DecisionLockCreate,
    DecisionLockVerification,
    InstallWindowAcceptance,
    InstallWindowProposal,
    InstallWindowProposalResponse,
    InstallWindowResponse,
    VerifyRequest,
)
from .service import CaseService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["Cases"])


def get_case_service(db: Session = Depends(get_db)) -> CaseService:
    """Dependency injection for CaseService"""
    return CaseService(db)


def get_shipment_service(db: Session = Depends(get_db)) -> ShipmentService:
    """Dependency injection for ShipmentService"""
    return ShipmentService(db)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[CaseSummaryResponse])
async def get_cases(
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
    state: Optional[str] = Query(None, description="Filter cases by state"),
):
    """Get all cases for the current user"""
    cases = service.list_cases(current_user, state)
    return [CaseSummaryResponse.model_validate(case) for case in cases]


@router.post("", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(
    data: CaseCreate,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    """Open a new case"""
    case = service.create_case(data, current_user)
    return CaseResponse.model_validate(case)


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    """Get a case with all child records"""
    case = service.get_case(case_id, current_user)
    return CaseResponse.model_validate(case)


# ============================================================================
# DIAGNOSIS AND DECISION
# ============================================================================


@router.post("/{case_id}/decision-pause", response_model=CaseResponse)
async def start_decision_pause(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    case = service.start_decision_pause(case_id, current_user)
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/verify", response_model=CaseResponse)
async def verify_case(
    case_id: str,
    data: VerifyRequest,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    """Start verification, or finish it with verified=true"""
    case = service.verify(case_id, data, current_user)
    return CaseResponse.model_validate(case)


@router.post(
    "/{case_id}/install-window/propose",
    response_model=InstallWindowProposalResponse,
    status_code=status.HTTP_201_CREATED,
)
async def propose_install_window(
    case_id: str,
    data: InstallWindowProposal,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    window, case = service.propose_install_window(case_id, data, current_user)
    return InstallWindowProposalResponse(
        installWindow=InstallWindowResponse.model_validate(window),
        case=CaseResponse.model_validate(case),
    )


@router.post("/{case_id}/install-window/accept", response_model=CaseResponse)
async def accept_install_window(
    case_id: str,
    data: InstallWindowAcceptance,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    case = service.accept_install_window(case_id, data, current_user)
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/decision-lock", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_decision_lock(
    case_id: str,
    data: DecisionLockCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    """Freeze the decision; request IP and User-Agent fill in when the body omits them"""
    client_ip = request.client.host if request.client else None
    device_info = request.headers.get("user-agent")
    case = service.create_decision_lock(case_id, data, current_user, client_ip, device_info)
    return CaseResponse.model_validate(case)


@router.get("/{case_id}/decision-lock/verify", response_model=DecisionLockVerification)
async def verify_decision_lock(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    """Re-hash the stored decision lock and receipt"""
    lock, lock_valid, receipt_valid = service.verify_decision_lock(case_id, current_user)
    return DecisionLockVerification(
        decisionLockId=lock.id, lockHashValid=lock_valid, receiptHashValid=receipt_valid
    )


# ============================================================================
# SCHEDULING
# ============================================================================


@router.post("/{case_id}/shop-window-confirm", response_model=CaseResponse)
async def confirm_shop_window(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    case = service.confirm_shop_window(case_id, current_user)
    return CaseResponse.model_validate(case)


@router.post(
    "/{case_id}/appointment/lock",
    response_model=AppointmentLockResponse,
    status_code=status.HTTP_201_CREATED,
)
async def lock_appointment(
    case_id: str,
    data: AppointmentLockRequest,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    appointment, case = service.lock_appointment(case_id, data, current_user)
    return AppointmentLockResponse(
        appointment=AppointmentResponse.model_validate(appointment),
        case=CaseResponse.model_validate(case),
    )


@router.post("/{case_id}/shipments", response_model=ShipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_shipment(
    case_id: str,
    data: ShipmentCreate,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Create a draft parts shipment for the case"""
    shipment = service.create_shipment(case_id, data, current_user)
    return ShipmentResponse.model_validate(shipment)


# ============================================================================
# INSTALL
# ============================================================================


@router.post("/{case_id}/install-start", response_model=CaseResponse)
async def start_install(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    case = service.start_install(case_id, current_user)
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/install-complete", response_model=CaseResponse)
async def complete_install(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    case = service.complete_install(case_id, current_user)
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/post-confirmation", response_model=CaseResponse)
async def post_confirmation(
    case_id: str,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    case = service.post_confirmation(case_id, current_user)
    return CaseResponse.model_validate(case)


# ============================================================================
# EXCEPTIONS
# ============================================================================


@router.post(
    "/{case_id}/exceptions",
    response_model=CaseExceptionCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_exception(
    case_id: str,
    data: CaseExceptionCreate,
    current_user: User = Depends(get_current_user),
    service: CaseService = Depends(get_case_service),
):
    """Record an exception; always allowed regardless of case state"""
    exception, case = service.create_exception(case_id, data, current_user)
    logger.info(f"Exception {exception.type} raised on case {case.id} by user {current_user.id}")
    return CaseExceptionCreatedResponse(
        exception=CaseExceptionResponse.model_validate(exception),
        case=CaseResponse.model_validate(case),
    )
