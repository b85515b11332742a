"""Endpoints API pour la gestion des patients.

Ce module définit les endpoints REST d'enregistrement, de recherche et de
mise à jour des patients invités du cabinet.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, require_roles
from app.schemas.patient import (
    GuestPatientCreate,
    GuestPatientResult,
    PatientListResponse,
    PatientResponse,
    PatientSummary,
    PatientUpdate,
)
from app.schemas.responses import (
    limited_create_responses,
    list_responses,
    read_responses,
    update_responses,
)
from app.schemas.utils import SanitizedSearchStr
from app.services import patient_service

router = APIRouter()

STAFF_ROLES = ("admin", "doctor", "pharmacist", "cashier")


@router.post(
    "",
    response_model=GuestPatientResult,
    status_code=status.HTTP_201_CREATED,
    summary="Enregistrer un patient invité",
    description=(
        "Enregistre un patient identifié par son téléphone. "
        "Retourne le patient existant si le numéro est déjà connu dans le cabinet."
    ),
    responses=limited_create_responses(),
)
async def create_guest_patient(
    data: GuestPatientCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> GuestPatientResult:
    """
    Enregistre un patient invité.

    Permissions requises : tout membre du personnel
    Limite : max_patients du plan
    """
    return await patient_service.create_guest_patient(db, ctx, data)


@router.get(
    "",
    response_model=PatientListResponse,
    summary="Rechercher des patients",
    responses=list_responses(),
)
async def list_patients(
    search: SanitizedSearchStr | None = Query(None, description="Nom ou téléphone"),
    skip: int = Query(0, ge=0, description="Nombre d'éléments à sauter"),
    limit: int = Query(20, ge=1, le=100, description="Nombre maximum d'éléments"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> PatientListResponse:
    return await patient_service.list_patients(db, ctx.tenant_id, search, skip, limit)


@router.get(
    "/{patient_id}",
    response_model=PatientResponse,
    summary="Récupérer un patient par ID",
    responses=read_responses(),
)
async def get_patient(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> PatientResponse:
    patient = await patient_service.get_patient(db, ctx.tenant_id, patient_id)
    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Patient {patient_id} not found",
        )
    return patient


@router.get(
    "/{patient_id}/summary",
    response_model=PatientSummary,
    summary="Historique d'un patient",
    description="Nombre de rendez-vous, achats, total dépensé et dernière visite",
    responses=read_responses(),
)
async def get_patient_summary(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*STAFF_ROLES)),
) -> PatientSummary:
    return await patient_service.get_patient_summary(db, ctx.tenant_id, patient_id)


@router.patch(
    "/{patient_id}",
    response_model=PatientResponse,
    summary="Mettre à jour un patient",
    responses=update_responses(),
)
async def update_patient(
    patient_id: uuid.UUID,
    data: PatientUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles("admin", "doctor", "pharmacist")),
) -> PatientResponse:
    return await patient_service.update_patient(db, ctx.tenant_id, patient_id, data)
