"""Shipment router - FastAPI endpoints for parts shipments and carrier callbacks"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...errors import CaseValidationError
from ...models import User
from ...webhook_security import WebhookSignatureError, verify_carrier_signature
from ..cases.schemas import CaseResponse
from .schemas import (
    CarrierExceptionWebhook,
    CarrierWebhookAck,
    CustodyEventCreate,
    CustodyEventResponse,
    ShipmentDetailResponse,
    ShipmentResponse,
    ShipmentTransitionResponse,
    ShipmentUpdate,
)
from .service import ShipmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipments", tags=["Shipments"])


def get_shipment_service(db: Session = Depends(get_db)) -> ShipmentService:
    """Dependency injection for ShipmentService"""
    return ShipmentService(db)


def _transition_response(shipment, case) -> ShipmentTransitionResponse:
    return ShipmentTransitionResponse(
        shipment=ShipmentResponse.model_validate(shipment),
        case=CaseResponse.model_validate(case),
    )


# ============================================================================
# CARRIER WEBHOOK
# ============================================================================


@router.post("/webhook/carrier-exception", response_model=CarrierWebhookAck)
async def carrier_exception_webhook(
    request: Request,
    x_carrier_signature: Optional[str] = Header(None, alias="X-Carrier-Signature"),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Carrier reports a delivery problem; the raw body is needed for the signature check"""
    body = await request.body()

    try:
        verify_carrier_signature(body, x_carrier_signature)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    try:
        data = CarrierExceptionWebhook.model_validate_json(body or b"{}")
    except ValidationError as e:
        raise CaseValidationError("Invalid carrier webhook payload") from e

    exception = service.record_carrier_exception(data)
    if exception is None:
        return CarrierWebhookAck(message="Duplicate event ignored", duplicate=True)
    return CarrierWebhookAck(message=f"Carrier exception recorded on case {exception.case_id}")


# ============================================================================
# SHIPMENT OPERATIONS
# ============================================================================


@router.get("/{shipment_id}", response_model=ShipmentDetailResponse)
async def get_shipment(
    shipment_id: str,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    shipment = service.get_shipment(shipment_id, current_user)
    return ShipmentDetailResponse.model_validate(shipment)


@router.patch("/{shipment_id}", response_model=ShipmentResponse)
async def update_shipment(
    shipment_id: str,
    data: ShipmentUpdate,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Edit a draft shipment's tracking number and carrier settings"""
    shipment = service.update_shipment(shipment_id, data, current_user)
    return ShipmentResponse.model_validate(shipment)


@router.post("/{shipment_id}/trigger", response_model=ShipmentTransitionResponse)
async def trigger_shipment(
    shipment_id: str,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    shipment, case = service.trigger(shipment_id, current_user)
    return _transition_response(shipment, case)


@router.post("/{shipment_id}/transit", response_model=ShipmentTransitionResponse)
async def set_in_transit(
    shipment_id: str,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    shipment, case = service.set_in_transit(shipment_id, current_user)
    return _transition_response(shipment, case)


@router.post("/{shipment_id}/delivered", response_model=ShipmentTransitionResponse)
async def set_delivered(
    shipment_id: str,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    shipment, case = service.set_delivered(shipment_id, current_user)
    return _transition_response(shipment, case)


@router.post(
    "/{shipment_id}/custody",
    response_model=CustodyEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_custody_event(
    shipment_id: str,
    data: CustodyEventCreate,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Append a chain-of-custody event"""
    event = service.add_custody_event(shipment_id, data, current_user)
    return CustodyEventResponse.model_validate(event)
