"""Vendor router - FastAPI endpoints for parts vendors"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ..cases.schemas import CaseResponse, VendorCommitmentResponse
from .schemas import AvailabilityConfirm, AvailabilityConfirmResponse, VendorResponse
from .service import VendorService

router = APIRouter(prefix="/vendor", tags=["Vendors"])


def get_vendor_service(db: Session = Depends(get_db)) -> VendorService:
    """Dependency injection for VendorService"""
    return VendorService(db)


@router.get("", response_model=list[VendorResponse])
async def get_vendors(
    current_user: User = Depends(get_current_user),
    service: VendorService = Depends(get_vendor_service),
):
    """List parts vendors"""
    return [VendorResponse.model_validate(v) for v in service.list_vendors()]


@router.post("/availability-confirm", response_model=AvailabilityConfirmResponse)
async def confirm_availability(
    data: AvailabilityConfirm,
    current_user: User = Depends(get_current_user),
    service: VendorService = Depends(get_vendor_service),
):
    """Vendor confirms availability for a decision-locked case"""
    commitment, case = service.confirm_availability(data, current_user)
    return AvailabilityConfirmResponse(
        commitment=VendorCommitmentResponse.model_validate(commitment),
        case=CaseResponse.model_validate(case),
    )
