"""Endpoints API des prestations et des rendez-vous."""

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, require_roles
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    ServiceCreate,
    ServiceResponse,
    ServiceUpdate,
)
from app.schemas.responses import (
    create_responses,
    delete_responses,
    limited_create_responses,
    list_responses,
    update_responses,
)
from app.services import appointment_service

services_router = APIRouter()
router = APIRouter()

STAFF_ROLES = ("admin", "doctor", "pharmacist", "cashier")


# =============================================================================
# Prestations (/services)
# =============================================================================


@services_router.get(
    "",
    response_model=list[ServiceResponse],
    summary="Lister les prestations",
    responses=list_responses(),
)
async def list_services(
    active_only: bool = Query(True, description="Uniquement les prestations actives"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> list[ServiceResponse]:
    return await appointment_service.list_services(db, ctx.tenant_id, active_only)


@services_router.post(
    "",
    response_model=ServiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer une prestation",
    responses=create_responses(),
)
async def create_service(
    data: ServiceCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> ServiceResponse:
    return await appointment_service.create_service(db, ctx.tenant_id, data)


@services_router.patch(
    "/{service_id}",
    response_model=ServiceResponse,
    summary="Modifier une prestation",
    responses=update_responses(),
)
async def update_service(
    service_id: uuid.UUID,
    data: ServiceUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> ServiceResponse:
    return await appointment_service.update_service(db, ctx.tenant_id, service_id, data)


@services_router.delete(
    "/{service_id}",
    response_model=ServiceResponse,
    summary="Désactiver une prestation",
    responses=delete_responses(),
)
async def deactivate_service(
    service_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin")),
) -> ServiceResponse:
    return await appointment_service.deactivate_service(db, ctx.tenant_id, service_id)


# =============================================================================
# Rendez-vous (/appointments)
# =============================================================================


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Réserver un rendez-vous",
    description=(
        "Réserve un rendez-vous pour un patient existant (patient_id) ou un "
        "nouveau patient invité (guest)."
    ),
    responses=limited_create_responses(),
)
async def book_appointment(
    data: AppointmentCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> AppointmentResponse:
    """
    Réserve un rendez-vous.

    Permissions requises : tout membre du personnel
    Limite : max_appointments_per_month du plan
    """
    return await appointment_service.book_appointment(db, ctx, data)


@router.get(
    "",
    response_model=list[AppointmentResponse],
    summary="Lister les rendez-vous",
    responses=list_responses(),
)
async def list_appointments(
    on_date: date | None = Query(None, alias="date", description="Jour des rendez-vous"),
    doctor_id: uuid.UUID | None = Query(None, description="Filtrer par médecin"),
    appointment_status: AppointmentStatus | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> list[AppointmentResponse]:
    return await appointment_service.list_appointments(
        db, ctx.tenant_id, on_date, doctor_id, appointment_status
    )


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    summary="Changer le statut d'un rendez-vous",
    responses=update_responses(),
)
async def update_appointment_status(
    appointment_id: uuid.UUID,
    data: AppointmentStatusUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin", "doctor")),
) -> AppointmentResponse:
    return await appointment_service.update_appointment_status(
        db, ctx, appointment_id, data.status
    )
