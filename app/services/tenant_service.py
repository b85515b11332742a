"""Service métier des tenants (cabinets et pharmacies)."""

import logging
import uuid

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.core.plans import DEFAULT_PLAN
from app.core.security import User
from app.models.staff import Profile
from app.models.tenant import Tenant
from app.schemas.tenant import TenantCreate, TenantResponse, TenantUpdate
from app.services.patient_service import normalize_phone
from app.services.usage_service import ensure_subscription_limits, get_tenant as load_tenant

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def create_tenant(db: AsyncSession, data: TenantCreate, owner: User) -> TenantResponse:
    """
    Crée un tenant sur le plan gratuit avec son administrateur.

    Pattern:
    1. Refuser un utilisateur déjà rattaché à un tenant
    2. Créer le tenant (plan free) et sa ligne subscription_limits
    3. Créer le profil admin du propriétaire

    Raises:
        ConflictError: Si l'utilisateur a déjà un profil
    """
    with tracer.start_as_current_span("create_tenant") as span:
        span.set_attribute("auth.user_id", owner.sub)

        existing = await db.execute(select(Profile.id).where(Profile.keycloak_user_id == owner.sub))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(detail="This user already belongs to a tenant")

        tenant = Tenant(
            name=data.name,
            plan_type=DEFAULT_PLAN,
            contact_person=data.contact_person or data.owner_full_name,
            contact_phone=normalize_phone(data.contact_phone) if data.contact_phone else None,
            billing_email=data.billing_email or owner.email,
            billing_address=data.billing_address,
            is_active=True,
        )
        db.add(tenant)
        await db.flush()

        await ensure_subscription_limits(db, tenant)

        db.add(
            Profile(
                tenant_id=tenant.id,
                keycloak_user_id=owner.sub,
                email=owner.email or "",
                full_name=data.owner_full_name,
                phone_number=(
                    normalize_phone(data.owner_phone_number) if data.owner_phone_number else None
                ),
                role="admin",
            )
        )
        await db.commit()
        await db.refresh(tenant)

        span.set_attribute("tenant.id", str(tenant.id))
        logger.info(f"Tenant {tenant.id} créé par {owner.sub}")
        return TenantResponse.model_validate(tenant)


async def get_tenant(db: AsyncSession, tenant_id: uuid.UUID) -> TenantResponse:
    return TenantResponse.model_validate(await load_tenant(db, tenant_id))


async def update_tenant(
    db: AsyncSession, tenant_id: uuid.UUID, data: TenantUpdate
) -> TenantResponse:
    """Met à jour les coordonnées du tenant (champs fournis uniquement)."""
    with tracer.start_as_current_span("update_tenant") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        tenant = await load_tenant(db, tenant_id)
        updates = data.model_dump(exclude_unset=True)
        if updates.get("contact_phone"):
            updates["contact_phone"] = normalize_phone(updates["contact_phone"])
        for field, value in updates.items():
            setattr(tenant, field, value)

        await db.commit()
        await db.refresh(tenant)
        return TenantResponse.model_validate(tenant)
