"""Endpoints API de l'abonnement et du journal d'audit."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, get_staff_context, require_roles
from app.schemas.audit import AuditLogListResponse
from app.schemas.responses import list_responses, read_responses
from app.schemas.subscription import SubscriptionStatus, UsageSnapshot
from app.services import audit_service, subscription_service, usage_service

router = APIRouter()
audit_router = APIRouter()


@router.get(
    "",
    response_model=SubscriptionStatus,
    summary="Statut de l'abonnement",
    description="Plan, statut, dates, limites, fonctionnalités et usage du cabinet",
    responses=read_responses(),
)
async def get_subscription_status(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(get_staff_context),
) -> SubscriptionStatus:
    return await subscription_service.get_subscription_status(db, ctx.tenant_id)


@router.get(
    "/usage",
    response_model=UsageSnapshot,
    summary="Usage courant du plan",
    responses=read_responses(),
)
async def get_usage(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(get_staff_context),
) -> UsageSnapshot:
    return await usage_service.get_usage_snapshot(db, ctx.tenant_id)


@audit_router.get(
    "",
    response_model=AuditLogListResponse,
    summary="Journal d'audit",
    responses=list_responses(),
)
async def list_audit_logs(
    entity_type: str | None = Query(None, max_length=50),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> AuditLogListResponse:
    return await audit_service.list_audit_logs(db, ctx.tenant_id, entity_type, skip, limit)
