"""Service metier pour la gestion des patients.

Les patients sont des "patients invités" enregistrés par le personnel. Le
téléphone normalisé identifie un patient au sein d'un tenant : un second
enregistrement avec le même numéro renvoie le patient existant.

Chaque tenant possède aussi un patient système "vente rapide" auquel sont
rattachées les ventes anonymes au comptoir.
"""

import logging
import re
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.events import publish, subject_for
from app.core.exceptions import ConflictError, NotFoundError
from app.core.security import StaffContext
from app.core.ttl_cache import quick_sale_cache
from app.models.appointment import Appointment
from app.models.patient import Patient
from app.models.sale import Sale
from app.schemas.patient import (
    GuestPatientCreate,
    GuestPatientResult,
    PatientListResponse,
    PatientPurchase,
    PatientResponse,
    PatientSummary,
    PatientUpdate,
)
from app.services.usage_service import enforce_usage_limit, invalidate_usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PATIENT_LIMIT_MESSAGE = (
    "Patient limit reached ({current}/{limit}). Please upgrade your plan to add more patients."
)
QUICK_SALE_PATIENT_NAME = "Quick Sale Customer"
QUICK_SALE_PATIENT_PHONE = "+254000000000"
QUICK_SALE_PATIENT_NOTES = "System-generated quick sale patient"

_PHONE_SEPARATORS = re.compile(r"[\s\-]")


def normalize_phone(raw: str) -> str:
    """
    Normalise un numéro au format international.

    - espaces et tirets supprimés
    - numéro local (0XXXXXXXXX) : préfixe pays par défaut (+254)
    - sinon préfixe "+" ajouté s'il manque

    Example:
        >>> normalize_phone("0712 345-678")
        '+254712345678'
    """
    phone = _PHONE_SEPARATORS.sub("", raw)
    if phone.startswith("0"):
        return f"+{settings.DEFAULT_COUNTRY_CODE}{phone[1:]}"
    if not phone.startswith("+"):
        return f"+{phone}"
    return phone


async def _find_by_phone(db: AsyncSession, tenant_id: uuid.UUID, phone: str) -> Patient | None:
    result = await db.execute(
        select(Patient).where(Patient.tenant_id == tenant_id, Patient.phone_number == phone)
    )
    return result.scalar_one_or_none()


async def create_guest_patient(
    db: AsyncSession, ctx: StaffContext, data: GuestPatientCreate
) -> GuestPatientResult:
    """
    Enregistre un patient invité ou retrouve le patient existant.

    Pattern:
    1. Vérifier la limite de patients du plan
    2. Normaliser le téléphone
    3. Retourner le patient existant avec ce téléphone, sinon l'insérer
    4. Invalider le snapshot d'usage et publier l'événement

    Raises:
        UsageLimitExceededError: Limite de patients atteinte
    """
    with tracer.start_as_current_span("create_guest_patient") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))

        await enforce_usage_limit(db, ctx.tenant_id, "max_patients", PATIENT_LIMIT_MESSAGE)

        phone = normalize_phone(data.phone_number)
        existing = await _find_by_phone(db, ctx.tenant_id, phone)
        if existing is not None:
            span.add_event("Patient existant retrouvé")
            existing.last_access = datetime.now(UTC)
            await db.commit()
            await db.refresh(existing)
            return GuestPatientResult(
                patient=PatientResponse.model_validate(existing),
                created=False,
                message="Found existing guest patient",
            )

        patient = Patient(
            tenant_id=ctx.tenant_id,
            full_name=data.full_name,
            phone_number=phone,
            email=data.email,
            date_of_birth=data.date_of_birth,
            gender=data.gender,
            address=data.address,
            notes=data.notes,
            patient_type="guest",
            last_access=datetime.now(UTC),
        )
        db.add(patient)
        try:
            await db.commit()
        except IntegrityError:
            # Enregistrement concurrent du même numéro
            await db.rollback()
            existing = await _find_by_phone(db, ctx.tenant_id, phone)
            if existing is None:
                raise
            return GuestPatientResult(
                patient=PatientResponse.model_validate(existing),
                created=False,
                message="Found existing guest patient",
            )
        await db.refresh(patient)

        span.set_attribute("patient.id", str(patient.id))
        span.add_event("Patient créé avec succès")

        await invalidate_usage(ctx.tenant_id)
        await publish(
            subject_for("patient", "created"),
            {
                "tenant_id": str(ctx.tenant_id),
                "patient_id": str(patient.id),
                "created_by": str(ctx.profile_id),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

        return GuestPatientResult(
            patient=PatientResponse.model_validate(patient),
            created=True,
            message="Guest patient created successfully",
        )


async def get_patient(
    db: AsyncSession, tenant_id: uuid.UUID, patient_id: uuid.UUID
) -> PatientResponse | None:
    """
    Recupere un patient du tenant.

    Returns:
        PatientResponse ou None si non trouve dans ce tenant
    """
    result = await db.execute(
        select(Patient).where(Patient.id == patient_id, Patient.tenant_id == tenant_id)
    )
    patient = result.scalar_one_or_none()
    return PatientResponse.model_validate(patient) if patient else None


async def verify_patient_exists(
    db: AsyncSession, tenant_id: uuid.UUID, patient_id: uuid.UUID
) -> Patient:
    """
    Raises:
        NotFoundError: Si le patient n'existe pas dans le tenant
    """
    result = await db.execute(
        select(Patient).where(Patient.id == patient_id, Patient.tenant_id == tenant_id)
    )
    patient = result.scalar_one_or_none()
    if patient is None:
        raise NotFoundError(resource_type="Patient", resource_id=patient_id)
    return patient


async def list_patients(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    search: str | None = None,
    skip: int = 0,
    limit: int = 20,
) -> PatientListResponse:
    """
    Liste les patients invités du tenant (hors patient "vente rapide").

    Args:
        search: Recherche partielle sur le nom ou le téléphone
    """
    with tracer.start_as_current_span("list_patients") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        filters = [Patient.tenant_id == tenant_id, Patient.patient_type == "guest"]
        if search:
            pattern = f"%{search}%"
            filters.append(or_(Patient.full_name.ilike(pattern), Patient.phone_number.ilike(pattern)))

        total = await db.scalar(select(func.count()).select_from(Patient).where(*filters))
        result = await db.execute(
            select(Patient)
            .where(*filters)
            .order_by(Patient.full_name)
            .offset(skip)
            .limit(limit)
        )
        items = [PatientResponse.model_validate(p) for p in result.scalars().all()]
        span.set_attribute("search.total_results", total or 0)

        return PatientListResponse(items=items, total=total or 0, skip=skip, limit=limit)


async def update_patient(
    db: AsyncSession, tenant_id: uuid.UUID, patient_id: uuid.UUID, data: PatientUpdate
) -> PatientResponse:
    """
    Met a jour un patient (champs fournis uniquement).

    Raises:
        NotFoundError: Patient absent du tenant
        ConflictError: Téléphone déjà utilisé par un autre patient du tenant
    """
    with tracer.start_as_current_span("update_patient") as span:
        span.set_attribute("patient.id", str(patient_id))

        patient = await verify_patient_exists(db, tenant_id, patient_id)
        updates = data.model_dump(exclude_unset=True)
        if updates.get("phone_number"):
            updates["phone_number"] = normalize_phone(updates["phone_number"])
        for field, value in updates.items():
            setattr(patient, field, value)

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(detail="Another patient already uses this phone number") from e
        await db.refresh(patient)

        span.add_event("Patient mis a jour avec succes")
        return PatientResponse.model_validate(patient)


async def get_or_create_quick_sale_patient(db: AsyncSession, tenant_id: uuid.UUID) -> uuid.UUID:
    """
    Retourne l'ID du patient "vente rapide" du tenant, créé au premier usage.

    L'ID est mis en cache en mémoire (24 h) par tenant.
    """
    cache_key = f"quick-sale-patient-{tenant_id}"
    cached = quick_sale_cache.get(cache_key, tenant_id)
    if cached is not None:
        return cached

    with tracer.start_as_current_span("get_or_create_quick_sale_patient") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        query = select(Patient).where(
            Patient.tenant_id == tenant_id, Patient.patient_type == "quick_sale"
        )
        patient = (await db.execute(query.limit(1))).scalar_one_or_none()

        if patient is None:
            patient = Patient(
                tenant_id=tenant_id,
                full_name=QUICK_SALE_PATIENT_NAME,
                phone_number=QUICK_SALE_PATIENT_PHONE,
                notes=QUICK_SALE_PATIENT_NOTES,
                patient_type="quick_sale",
            )
            db.add(patient)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                patient = (await db.execute(query.limit(1))).scalar_one()
            span.add_event("Patient vente rapide créé")
            logger.info(f"Patient vente rapide créé pour le tenant {tenant_id}")

        quick_sale_cache.set(cache_key, patient.id, tenant_id)
        return patient.id


async def get_patient_summary(
    db: AsyncSession, tenant_id: uuid.UUID, patient_id: uuid.UUID
) -> PatientSummary:
    """Patient avec son nombre de rendez-vous, ses achats et sa dernière visite."""
    with tracer.start_as_current_span("get_patient_summary") as span:
        span.set_attribute("patient.id", str(patient_id))

        patient = await verify_patient_exists(db, tenant_id, patient_id)

        appointment_count = await db.scalar(
            select(func.count())
            .select_from(Appointment)
            .where(Appointment.tenant_id == tenant_id, Appointment.patient_id == patient_id)
        )
        last_appointment = await db.scalar(
            select(func.max(Appointment.date)).where(
                Appointment.tenant_id == tenant_id,
                Appointment.patient_id == patient_id,
                Appointment.status != "cancelled",
            )
        )

        sales = (
            await db.execute(
                select(Sale)
                .where(Sale.tenant_id == tenant_id, Sale.patient_id == patient_id)
                .order_by(Sale.created_at.desc())
            )
        ).scalars().all()

        purchases = [
            PatientPurchase(
                sale_id=sale.id,
                total_amount=sale.total_amount,
                payment_status=sale.payment_status,
                created_at=sale.created_at,
            )
            for sale in sales
        ]
        total_spent = sum(
            (sale.total_amount for sale in sales if sale.payment_status == "paid"), Decimal("0")
        )

        visits = [sale.created_at for sale in sales[:1]]
        if last_appointment is not None:
            visits.append(datetime.combine(last_appointment, datetime.min.time(), tzinfo=UTC))
        last_visit = max(visits) if visits else None

        return PatientSummary(
            patient=PatientResponse.model_validate(patient),
            appointment_count=appointment_count or 0,
            purchases=purchases,
            total_spent=total_spent,
            last_visit=last_visit,
        )
