"""Settlement router - FastAPI endpoints for closing appointments and groups"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.invoice_service import InvoiceProvider, get_invoice_provider
from .schemas import GroupSettlementCreate, PaymentResponse, SettlementCreate, SettlementResponse
from .service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlements", tags=["Settlements"])


def get_settlement_service(
    db: Session = Depends(get_db),
    invoice_provider: InvoiceProvider = Depends(get_invoice_provider),
) -> SettlementService:
    """Dependency injection for SettlementService"""
    return SettlementService(db, invoice_provider)


@router.post("", response_model=SettlementResponse, status_code=201)
async def settle_appointment(
    data: SettlementCreate,
    service: SettlementService = Depends(get_settlement_service),
):
    """
    Close an in-progress appointment.

    The payment is committed before the invoice is requested; an invoicing
    failure is reported with invoice_pending=true and retried later.
    """
    return await service.settle_appointment(data)


@router.post("/group", response_model=SettlementResponse, status_code=201)
async def settle_group(
    data: GroupSettlementCreate,
    service: SettlementService = Depends(get_settlement_service),
):
    """Close every member of an appointment group in one payment"""
    return await service.settle_group(data)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    service: SettlementService = Depends(get_settlement_service),
):
    return service.get_payment(payment_id)


__all__ = ["router"]
