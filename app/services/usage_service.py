"""Service des limites d'usage par plan d'abonnement.

Les limites effectives d'un tenant viennent de sa ligne
``subscription_limits`` si elle existe, sinon des valeurs par défaut de son
plan. ``-1`` signifie illimité.

Le snapshot d'usage (compteurs + messages) est mis en cache dans Redis
pour ``CACHE_TTL_USAGE`` secondes. Toute écriture qui change un compteur
ou le plan du tenant doit appeler ``invalidate_usage``.
"""

import logging
import uuid
from datetime import UTC, date, datetime

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import cache_get, cache_key_usage, cache_set, invalidate_tenant_cache
from app.core.config import settings
from app.core.exceptions import NotFoundError, PlanUpgradeRequiredError, UsageLimitExceededError
from app.core.plans import (
    LIMIT_TYPES,
    SUBSCRIPTION_LIMITS,
    get_limit_message,
    get_plan_limits,
    is_unlimited,
    is_within_limit,
    normalize_plan,
    plan_satisfies,
)
from app.models.appointment import Appointment
from app.models.patient import Patient
from app.models.pharmacy import Medication
from app.models.sale import Sale
from app.models.staff import Profile
from app.models.tenant import SubscriptionLimit, Tenant
from app.schemas.subscription import UsageCheck, UsageItem, UsageSnapshot

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def month_bounds(today: date | None = None) -> tuple[date, date]:
    """Premier jour du mois courant et premier jour du mois suivant."""
    today = today or datetime.now(UTC).date()
    start = today.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


async def get_tenant(db: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(resource_type="Tenant", resource_id=tenant_id)
    return tenant


async def get_limits_row(db: AsyncSession, tenant_id: uuid.UUID) -> SubscriptionLimit | None:
    result = await db.execute(
        select(SubscriptionLimit).where(SubscriptionLimit.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def get_effective_limits(db: AsyncSession, tenant: Tenant) -> dict[str, int]:
    """Limites applicables au tenant (ligne subscription_limits ou défauts du plan)."""
    row = await get_limits_row(db, tenant.id)
    if row is not None:
        limits = {limit_type: getattr(row, limit_type) for limit_type in LIMIT_TYPES}
    else:
        limits = get_plan_limits(tenant.plan_type)
    if tenant.max_users is not None:
        limits["max_users"] = tenant.max_users
    return limits


async def count_usage(db: AsyncSession, tenant_id: uuid.UUID, limit_type: str) -> int:
    """Compte l'usage courant d'un tenant pour un type de limite."""
    month_start, next_month = month_bounds()
    month_start_dt = datetime.combine(month_start, datetime.min.time(), tzinfo=UTC)

    if limit_type == "max_patients":
        query = select(func.count()).select_from(Patient).where(Patient.tenant_id == tenant_id)
    elif limit_type == "max_appointments_per_month":
        query = (
            select(func.count())
            .select_from(Appointment)
            .where(
                Appointment.tenant_id == tenant_id,
                Appointment.date >= month_start,
                Appointment.date < next_month,
            )
        )
    elif limit_type == "max_inventory_items":
        query = (
            select(func.count())
            .select_from(Medication)
            .where(Medication.tenant_id == tenant_id, Medication.is_active.is_(True))
        )
    elif limit_type == "max_users":
        query = select(func.count()).select_from(Profile).where(Profile.tenant_id == tenant_id)
    elif limit_type == "max_transactions_per_month":
        query = (
            select(func.count())
            .select_from(Sale)
            .where(
                Sale.tenant_id == tenant_id,
                Sale.payment_status == "paid",
                Sale.created_at >= month_start_dt,
            )
        )
    else:
        raise ValueError(f"Type de limite inconnu: {limit_type}")

    return (await db.scalar(query)) or 0


async def check_usage_limit(db: AsyncSession, tenant_id: uuid.UUID, limit_type: str) -> UsageCheck:
    """
    Vérifie si le tenant peut encore consommer une unité de ``limit_type``.

    Returns:
        UsageCheck(allowed, current, limit, plan_type). Pour une limite
        illimitée, le compteur n'est pas calculé (current=0).
    """
    with tracer.start_as_current_span("check_usage_limit") as span:
        span.set_attribute("tenant.id", str(tenant_id))
        span.set_attribute("usage.limit_type", limit_type)

        tenant = await get_tenant(db, tenant_id)
        plan_type = normalize_plan(tenant.plan_type)
        limit = (await get_effective_limits(db, tenant))[limit_type]

        if is_unlimited(limit):
            span.add_event("Limite illimitée")
            return UsageCheck(allowed=True, current=0, limit=-1, plan_type=plan_type)

        current = await count_usage(db, tenant_id, limit_type)
        allowed = current < limit
        span.set_attribute("usage.current", current)
        span.set_attribute("usage.limit", limit)
        span.set_attribute("usage.allowed", allowed)

        return UsageCheck(allowed=allowed, current=current, limit=limit, plan_type=plan_type)


async def enforce_usage_limit(
    db: AsyncSession, tenant_id: uuid.UUID, limit_type: str, message: str
) -> UsageCheck:
    """
    Lève UsageLimitExceededError si la limite est atteinte.

    Args:
        message: Gabarit du message avec les champs ``{current}`` et ``{limit}``
    """
    check = await check_usage_limit(db, tenant_id, limit_type)
    if not check.allowed:
        logger.info(
            f"Limite {limit_type} atteinte pour le tenant {tenant_id} "
            f"({check.current}/{check.limit}, plan {check.plan_type})"
        )
        raise UsageLimitExceededError(
            limit_type=limit_type,
            current=check.current,
            limit=check.limit,
            detail=message.format(current=check.current, limit=check.limit),
        )
    return check


async def ensure_subscription_limits(db: AsyncSession, tenant: Tenant) -> SubscriptionLimit:
    """Crée la ligne subscription_limits du tenant à partir de son plan si absente."""
    row = await get_limits_row(db, tenant.id)
    if row is not None:
        return row

    plan_type = normalize_plan(tenant.plan_type)
    defaults = SUBSCRIPTION_LIMITS[plan_type]
    row = SubscriptionLimit(
        tenant_id=tenant.id,
        plan_type=plan_type,
        features=list(defaults["features"]),
        **{limit_type: defaults[limit_type] for limit_type in LIMIT_TYPES},
    )
    db.add(row)
    await db.flush()
    logger.info(f"Limites {plan_type} créées pour le tenant {tenant.id}")
    return row


async def get_usage_snapshot(db: AsyncSession, tenant_id: uuid.UUID) -> UsageSnapshot:
    """Compteurs, limites et messages d'usage du tenant (cache Redis)."""
    with tracer.start_as_current_span("get_usage_snapshot") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        cache_key = cache_key_usage(tenant_id)
        cached_json = await cache_get(cache_key)
        if cached_json:
            span.add_event("Cache HIT")
            return UsageSnapshot.model_validate_json(cached_json)

        tenant = await get_tenant(db, tenant_id)
        limits = await get_effective_limits(db, tenant)

        usage: dict[str, UsageItem] = {}
        for limit_type in LIMIT_TYPES:
            current = await count_usage(db, tenant_id, limit_type)
            limit = limits[limit_type]
            usage[limit_type] = UsageItem(
                limit_type=limit_type,
                current=current,
                limit=limit,
                is_within_limit=is_within_limit(current, limit),
                message=get_limit_message(limit_type, current, limit),
            )

        snapshot = UsageSnapshot(
            tenant_id=tenant_id,
            plan_type=normalize_plan(tenant.plan_type),
            usage=usage,
            generated_at=datetime.now(UTC),
        )
        await cache_set(cache_key, snapshot.model_dump_json(), ttl=settings.CACHE_TTL_USAGE)
        return snapshot


async def invalidate_usage(tenant_id: uuid.UUID) -> None:
    """Invalide le snapshot d'usage et les agrégats en cache du tenant."""
    await invalidate_tenant_cache(tenant_id)


def validate_subscription_requirements(tenant: Tenant, required_plan: str) -> None:
    """
    Vérifie que le plan du tenant couvre ``required_plan``.

    Raises:
        PlanUpgradeRequiredError: Si le plan du tenant est inférieur
    """
    if not plan_satisfies(tenant.plan_type, required_plan):
        raise PlanUpgradeRequiredError(
            required_plan=required_plan, current_plan=normalize_plan(tenant.plan_type)
        )
