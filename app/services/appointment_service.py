"""Service métier des prestations cliniques et des rendez-vous."""

import logging
import uuid
from datetime import UTC, date, datetime, time

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.events import publish, subject_for
from app.core.exceptions import AppointmentConflictError, BadRequestError, NotFoundError
from app.core.security import StaffContext
from app.models.appointment import Appointment, Service
from app.models.staff import Profile
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    ServiceCreate,
    ServiceResponse,
    ServiceUpdate,
)
from app.services.patient_service import create_guest_patient, verify_patient_exists
from app.services.usage_service import enforce_usage_limit, invalidate_usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

APPOINTMENT_LIMIT_MESSAGE = (
    "Appointment limit reached ({current}/{limit}). "
    "Please upgrade your plan to book more appointments."
)


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def overlaps(start: time, other_start: time, duration: int) -> bool:
    """Deux rendez-vous du même médecin se chevauchent s'ils commencent à moins de ``duration`` minutes d'écart."""
    return abs(_minutes(start) - _minutes(other_start)) < duration


# =============================================================================
# Prestations
# =============================================================================


async def _get_service(db: AsyncSession, tenant_id: uuid.UUID, service_id: uuid.UUID) -> Service:
    result = await db.execute(
        select(Service).where(Service.id == service_id, Service.tenant_id == tenant_id)
    )
    service = result.scalar_one_or_none()
    if service is None:
        raise NotFoundError(resource_type="Service", resource_id=service_id)
    return service


async def create_service(
    db: AsyncSession, tenant_id: uuid.UUID, data: ServiceCreate
) -> ServiceResponse:
    service = Service(tenant_id=tenant_id, is_active=True, **data.model_dump())
    db.add(service)
    await db.commit()
    await db.refresh(service)
    logger.info(f"Prestation {service.id} créée pour le tenant {tenant_id}")
    return ServiceResponse.model_validate(service)


async def list_services(
    db: AsyncSession, tenant_id: uuid.UUID, active_only: bool = True
) -> list[ServiceResponse]:
    filters = [Service.tenant_id == tenant_id]
    if active_only:
        filters.append(Service.is_active.is_(True))
    result = await db.execute(select(Service).where(*filters).order_by(Service.name))
    return [ServiceResponse.model_validate(s) for s in result.scalars().all()]


async def update_service(
    db: AsyncSession, tenant_id: uuid.UUID, service_id: uuid.UUID, data: ServiceUpdate
) -> ServiceResponse:
    service = await _get_service(db, tenant_id, service_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(service, field, value)
    await db.commit()
    await db.refresh(service)
    return ServiceResponse.model_validate(service)


async def deactivate_service(
    db: AsyncSession, tenant_id: uuid.UUID, service_id: uuid.UUID
) -> ServiceResponse:
    """Désactive une prestation (les rendez-vous existants la conservent)."""
    service = await _get_service(db, tenant_id, service_id)
    service.is_active = False
    await db.commit()
    await db.refresh(service)
    return ServiceResponse.model_validate(service)


# =============================================================================
# Rendez-vous
# =============================================================================


async def book_appointment(
    db: AsyncSession, ctx: StaffContext, data: AppointmentCreate
) -> AppointmentResponse:
    """
    Réserve un rendez-vous.

    Pattern:
    1. Résoudre le patient (patient_id ou patient invité)
    2. Valider médecin, date, heure et prestation
    3. Vérifier la limite mensuelle de rendez-vous
    4. Refuser un chevauchement avec un rendez-vous non annulé du médecin
    5. Insérer (pending / unpaid) et publier l'événement

    Raises:
        BadRequestError: Champs obligatoires manquants
        NotFoundError: Patient, médecin ou prestation absent du tenant
        UsageLimitExceededError: Limite mensuelle atteinte
        AppointmentConflictError: Créneau déjà pris pour ce médecin
    """
    with tracer.start_as_current_span("book_appointment") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))

        if data.patient_id is None and data.guest is None:
            raise BadRequestError(detail="Missing required fields")
        if (
            data.doctor_id is None
            or data.date is None
            or data.time is None
            or (data.service_id is None and not data.custom_service)
        ):
            raise BadRequestError(detail="Missing required fields")

        doctor = (
            await db.execute(
                select(Profile).where(
                    Profile.id == data.doctor_id,
                    Profile.tenant_id == ctx.tenant_id,
                    Profile.role == "doctor",
                )
            )
        ).scalar_one_or_none()
        if doctor is None:
            raise NotFoundError(resource_type="Doctor", resource_id=data.doctor_id)

        duration = settings.DEFAULT_APPOINTMENT_DURATION
        if data.service_id is not None:
            service = await _get_service(db, ctx.tenant_id, data.service_id)
            duration = service.duration or duration

        await enforce_usage_limit(
            db, ctx.tenant_id, "max_appointments_per_month", APPOINTMENT_LIMIT_MESSAGE
        )

        if data.patient_id is not None:
            patient_id = (await verify_patient_exists(db, ctx.tenant_id, data.patient_id)).id
        else:
            patient_id = (await create_guest_patient(db, ctx, data.guest)).patient.id
        span.set_attribute("patient.id", str(patient_id))

        same_day = (
            await db.execute(
                select(Appointment.time).where(
                    Appointment.tenant_id == ctx.tenant_id,
                    Appointment.doctor_id == data.doctor_id,
                    Appointment.date == data.date,
                    Appointment.status != "cancelled",
                )
            )
        ).scalars().all()
        if any(overlaps(data.time, other, duration) for other in same_day):
            span.add_event("Conflit de créneau")
            raise AppointmentConflictError()

        appointment = Appointment(
            tenant_id=ctx.tenant_id,
            patient_id=patient_id,
            doctor_id=data.doctor_id,
            service_id=data.service_id,
            custom_service=data.custom_service,
            date=data.date,
            time=data.time,
            duration=duration,
            notes=data.notes,
            status="pending",
            payment_status="unpaid",
        )
        db.add(appointment)
        await db.commit()
        await db.refresh(appointment)

        span.set_attribute("appointment.id", str(appointment.id))
        await invalidate_usage(ctx.tenant_id)
        await publish(
            subject_for("appointment", "booked"),
            {
                "tenant_id": str(ctx.tenant_id),
                "appointment_id": str(appointment.id),
                "patient_id": str(patient_id),
                "doctor_id": str(data.doctor_id),
                "date": data.date.isoformat(),
                "time": data.time.isoformat(),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        return AppointmentResponse.model_validate(appointment)


async def list_appointments(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    on_date: date | None = None,
    doctor_id: uuid.UUID | None = None,
    status: str | None = None,
) -> list[AppointmentResponse]:
    filters = [Appointment.tenant_id == tenant_id]
    if on_date is not None:
        filters.append(Appointment.date == on_date)
    if doctor_id is not None:
        filters.append(Appointment.doctor_id == doctor_id)
    if status:
        filters.append(Appointment.status == status)

    result = await db.execute(
        select(Appointment).where(*filters).order_by(Appointment.date, Appointment.time)
    )
    return [AppointmentResponse.model_validate(a) for a in result.scalars().all()]


async def update_appointment_status(
    db: AsyncSession, ctx: StaffContext, appointment_id: uuid.UUID, status: str
) -> AppointmentResponse:
    """Change le statut d'un rendez-vous du tenant."""
    with tracer.start_as_current_span("update_appointment_status") as span:
        span.set_attribute("appointment.id", str(appointment_id))
        span.set_attribute("appointment.status", status)

        result = await db.execute(
            select(Appointment).where(
                Appointment.id == appointment_id, Appointment.tenant_id == ctx.tenant_id
            )
        )
        appointment = result.scalar_one_or_none()
        if appointment is None:
            raise NotFoundError(resource_type="Appointment", resource_id=appointment_id)

        appointment.status = status
        await db.commit()
        await db.refresh(appointment)

        logger.info(f"Rendez-vous {appointment_id} -> {status} par {ctx.profile_id}")
        return AppointmentResponse.model_validate(appointment)
