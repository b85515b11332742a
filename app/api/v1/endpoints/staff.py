"""Endpoints API du personnel et des invitations."""

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, User, get_current_user, require_roles
from app.schemas.responses import (
    create_responses,
    delete_responses,
    limited_create_responses,
    list_responses,
    update_responses,
)
from app.schemas.staff import (
    InvitationCreate,
    InvitationResponse,
    ProfileResponse,
    StaffRoleUpdate,
)
from app.services import staff_service

router = APIRouter()


@router.get(
    "",
    response_model=list[ProfileResponse],
    summary="Lister le personnel du cabinet",
    responses=list_responses(),
)
async def list_staff(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> list[ProfileResponse]:
    return await staff_service.list_staff(db, ctx.tenant_id)


@router.get(
    "/invitations",
    response_model=list[InvitationResponse],
    summary="Lister les invitations",
    responses=list_responses(),
)
async def list_invitations(
    invitation_status: Literal["pending", "accepted", "expired", "revoked"] | None = Query(
        None, alias="status", description="Filtrer par statut"
    ),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> list[InvitationResponse]:
    return await staff_service.list_invitations(db, ctx.tenant_id, invitation_status)


@router.post(
    "/invitations",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Inviter un membre du personnel",
    description="Crée une invitation valable 7 jours pour l'email donné",
    responses=limited_create_responses(),
)
async def send_invitation(
    data: InvitationCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> InvitationResponse:
    """
    Invite un membre du personnel.

    Permissions requises : role 'admin'
    Limite : max_users du plan (plans pro et enterprise exemptés)
    """
    return await staff_service.send_invitation(db, ctx, data)


@router.post(
    "/invitations/{invitation_id}/accept",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Accepter une invitation",
    description="Rattache l'utilisateur authentifié au cabinet de l'invitation",
    responses=create_responses(),
)
async def accept_invitation(
    invitation_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    return await staff_service.accept_invitation(db, invitation_id, current_user)


@router.delete(
    "/invitations/{invitation_id}",
    response_model=InvitationResponse,
    summary="Révoquer une invitation",
    responses=delete_responses(),
)
async def revoke_invitation(
    invitation_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> InvitationResponse:
    return await staff_service.revoke_invitation(db, ctx, invitation_id)


@router.patch(
    "/{profile_id}/role",
    response_model=ProfileResponse,
    summary="Changer le rôle d'un membre",
    responses=update_responses(),
)
async def update_staff_role(
    profile_id: uuid.UUID,
    data: StaffRoleUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> ProfileResponse:
    return await staff_service.update_staff_role(db, ctx, profile_id, data.role)
