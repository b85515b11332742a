"""Endpoints API des cabinets (tenants)."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, User, get_current_user, get_staff_context, require_roles
from app.schemas.responses import create_responses, read_responses, update_responses
from app.schemas.tenant import TenantCreate, TenantResponse, TenantUpdate
from app.services import tenant_service

router = APIRouter()


@router.post(
    "",
    response_model=TenantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un cabinet",
    description="Crée un cabinet sur le plan free; l'utilisateur courant en devient l'administrateur",
    responses=create_responses(),
)
async def create_tenant(
    data: TenantCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> TenantResponse:
    return await tenant_service.create_tenant(db, data, current_user)


@router.get(
    "/me",
    response_model=TenantResponse,
    summary="Cabinet courant",
    responses=read_responses(),
)
async def get_my_tenant(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(get_staff_context),
) -> TenantResponse:
    return await tenant_service.get_tenant(db, ctx.tenant_id)


@router.patch(
    "/me",
    response_model=TenantResponse,
    summary="Modifier le cabinet courant",
    responses=update_responses(),
)
async def update_my_tenant(
    data: TenantUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> TenantResponse:
    """
    Met à jour les informations de contact et de facturation du cabinet.

    Permissions requises : role 'admin'
    """
    return await tenant_service.update_tenant(db, ctx.tenant_id, data)
