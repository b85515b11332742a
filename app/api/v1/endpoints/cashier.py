"""Endpoints API de la caisse."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, require_roles
from app.schemas.cashier import (
    CashPaymentRequest,
    CashPaymentResponse,
    PaymentHistoryResponse,
    PendingPaymentsResponse,
    ReceiptRequest,
    ReceiptResponse,
)
from app.schemas.responses import create_responses, list_responses, update_responses
from app.services import cashier_service

router = APIRouter()

CASHIER_ROLES = ("admin", "cashier", "pharmacist", "doctor")


@router.get(
    "/pending",
    response_model=PendingPaymentsResponse,
    summary="Paiements en attente",
    description="Rendez-vous et ventes non payés du cabinet",
    responses=list_responses(),
)
async def get_pending_payments(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*CASHIER_ROLES)),
) -> PendingPaymentsResponse:
    return await cashier_service.get_pending_payments(db, ctx.tenant_id)


@router.get(
    "/patients/{patient_id}/unpaid",
    response_model=PendingPaymentsResponse,
    summary="Éléments non payés d'un patient",
    responses=list_responses(),
)
async def get_unpaid_items(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*CASHIER_ROLES)),
) -> PendingPaymentsResponse:
    return await cashier_service.get_unpaid_items(db, ctx.tenant_id, patient_id)


@router.post(
    "/payments",
    response_model=CashPaymentResponse,
    summary="Encaisser en espèces",
    description="Marque un rendez-vous ou une vente comme payé; 409 si déjà payé",
    responses=update_responses(),
)
async def process_cash_payment(
    data: CashPaymentRequest,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*CASHIER_ROLES)),
) -> CashPaymentResponse:
    return await cashier_service.process_cash_payment(
        db, ctx, data.item_type, data.item_id, data.amount
    )


@router.get(
    "/payments",
    response_model=PaymentHistoryResponse,
    summary="Historique des paiements",
    responses=list_responses(),
)
async def get_payment_history(
    start: datetime | None = Query(None, description="Début de la période"),
    end: datetime | None = Query(None, description="Fin de la période"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*CASHIER_ROLES)),
) -> PaymentHistoryResponse:
    return await cashier_service.get_payment_history(db, ctx.tenant_id, start, end, skip, limit)


@router.post(
    "/receipts",
    response_model=ReceiptResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Générer un reçu",
    description="Reçu numéroté RCP-YYYYMMDD-XXXXXX pour une vente et/ou un rendez-vous",
    responses=create_responses(),
)
async def generate_receipt(
    data: ReceiptRequest,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*CASHIER_ROLES)),
) -> ReceiptResponse:
    return await cashier_service.generate_receipt(db, ctx, data.sale_id, data.appointment_id)
