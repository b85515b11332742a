"""Endpoints API des rapports et du tableau de bord."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import require_feature
from app.core.security import StaffContext, require_roles
from app.schemas.report import (
    DashboardResponse,
    MedicationProfit,
    RevenueResponse,
    StockMovementReport,
    TopSellingMedication,
)
from app.schemas.responses import list_responses, read_responses
from app.services import report_service

router = APIRouter()

REPORT_ROLES = ("admin", "pharmacist")


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Tableau de bord",
    responses=list_responses(),
)
async def get_dashboard(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin", "doctor", "pharmacist", "cashier")),
) -> DashboardResponse:
    return await report_service.get_dashboard(db, ctx.tenant_id)


@router.get(
    "/revenue",
    response_model=RevenueResponse,
    summary="Chiffre d'affaires",
    description="Ventes payées sur le dernier jour, la dernière semaine ou le dernier mois",
    responses=read_responses(),
)
async def get_revenue(
    period: str | None = Query(None, description="daily, weekly ou monthly"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*REPORT_ROLES)),
) -> RevenueResponse:
    return await report_service.get_revenue(db, ctx.tenant_id, period)


@router.get(
    "/profit",
    response_model=list[MedicationProfit],
    summary="Rentabilité et réapprovisionnement",
    responses=list_responses(),
    dependencies=[Depends(require_feature("pharmacy_analytics"))],
)
async def calculate_profit_and_reorders(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*REPORT_ROLES)),
) -> list[MedicationProfit]:
    return await report_service.calculate_profit_and_reorders(db, ctx.tenant_id)


@router.get(
    "/top-selling",
    response_model=list[TopSellingMedication],
    summary="Médicaments les plus vendus",
    responses=list_responses(),
    dependencies=[Depends(require_feature("pharmacy_reports"))],
)
async def get_top_selling_medications(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*REPORT_ROLES)),
) -> list[TopSellingMedication]:
    return await report_service.get_top_selling_medications(db, ctx.tenant_id, limit)


@router.get(
    "/stock-movements",
    response_model=StockMovementReport,
    summary="Mouvements de stock",
    responses=list_responses(),
    dependencies=[Depends(require_feature("pharmacy_reports"))],
)
async def get_stock_movement_report(
    medication_id: uuid.UUID | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*REPORT_ROLES)),
) -> StockMovementReport:
    return await report_service.get_stock_movement_report(
        db, ctx.tenant_id, medication_id, start, end
    )
