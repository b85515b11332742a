"""Endpoints API des ventes."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, require_roles
from app.schemas.responses import (
    limited_create_responses,
    list_responses,
    read_responses,
    update_responses,
)
from app.schemas.sale import (
    SaleCreate,
    SaleListQuery,
    SaleListResponse,
    SaleResponse,
    SalesMetrics,
    SaleStatusUpdate,
)
from app.schemas.utils import Timeframe
from app.services import sale_service

router = APIRouter()

SALE_ROLES = ("admin", "pharmacist", "cashier")


@router.post(
    "",
    response_model=SaleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enregistrer une vente",
    description=(
        "Vente atomique: les lots sont verrouillés et décrémentés dans une seule "
        "transaction. 409 si un lot n'a pas assez de stock."
    ),
    responses=limited_create_responses(),
)
async def create_sale(
    data: SaleCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*SALE_ROLES)),
) -> SaleResponse:
    """
    Enregistre une vente de médicaments.

    Permissions requises : role 'admin', 'pharmacist' ou 'cashier'
    Limite : max_transactions_per_month du plan
    """
    return await sale_service.create_sale(db, ctx, data)


@router.get(
    "",
    response_model=SaleListResponse,
    summary="Lister les ventes",
    responses=list_responses(),
)
async def list_sales(
    query: Annotated[SaleListQuery, Query()],
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*SALE_ROLES)),
) -> SaleListResponse:
    return await sale_service.list_sales(db, ctx.tenant_id, query)


@router.get(
    "/metrics",
    response_model=SalesMetrics,
    summary="Indicateurs de ventes",
    responses=list_responses(),
)
async def get_sales_metrics(
    timeframe: Timeframe = Query("all", description="Période"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin", "pharmacist")),
) -> SalesMetrics:
    return await sale_service.get_sales_metrics(db, ctx.tenant_id, timeframe)


@router.get(
    "/{sale_id}",
    response_model=SaleResponse,
    summary="Récupérer une vente",
    responses=read_responses(),
)
async def get_sale(
    sale_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*SALE_ROLES)),
) -> SaleResponse:
    return await sale_service.get_sale(db, ctx.tenant_id, sale_id)


@router.patch(
    "/{sale_id}/status",
    response_model=SaleResponse,
    summary="Changer le statut de paiement d'une vente",
    responses=update_responses(),
)
async def update_sale_status(
    sale_id: uuid.UUID,
    data: SaleStatusUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin", "pharmacist")),
) -> SaleResponse:
    return await sale_service.update_sale_status(
        db, ctx, sale_id, data.payment_status, data.payment_method
    )
