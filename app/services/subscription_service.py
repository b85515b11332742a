"""Service d'abonnement : traitement des événements Stripe et statut du plan.

Chaque événement vérifié met à jour le tenant (plan, statut, dates) et ses
limites dans ``subscription_limits``. Les erreurs de traitement sont
tracées dans le journal d'audit avant d'être propagées.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from opentelemetry import trace
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.events import publish, subject_for
from app.core.exceptions import BadRequestError, NotFoundError
from app.core.plans import (
    LIMIT_TYPES,
    PAID_PLAN_LIMITS,
    SUBSCRIPTION_LIMITS,
    get_features_for_plan,
    normalize_plan,
)
from app.models.tenant import SubscriptionLimit, Tenant
from app.schemas.subscription import (
    FeatureResponse,
    StripeEvent,
    SubscriptionStatus,
    WebhookReceived,
)
from app.services.audit_service import SYSTEM_ACTOR, record_audit
from app.services.usage_service import (
    ensure_subscription_limits,
    get_effective_limits,
    get_limits_row,
    get_tenant,
    get_usage_snapshot,
    invalidate_usage,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

EventHandler = Callable[[AsyncSession, StripeEvent], Awaitable[uuid.UUID | None]]


def plan_from_price(price_id: str | None, metadata: dict | None = None) -> str:
    """
    Plan correspondant à un prix Stripe, sinon ``metadata.plan_type``, sinon ``free``.
    """
    if price_id and price_id == settings.STRIPE_PRO_PRICE_ID:
        return "pro"
    if price_id and price_id == settings.STRIPE_ENTERPRISE_PRICE_ID:
        return "enterprise"
    return normalize_plan((metadata or {}).get("plan_type"))


def _parse_tenant_id(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise BadRequestError(detail=f"Invalid tenant_id in metadata: {value}") from e


def _price_id(obj: dict) -> str | None:
    """Premier prix d'un objet Stripe (session checkout ou abonnement)."""
    items = (obj.get("items") or obj.get("line_items") or {}).get("data") or []
    if items:
        return (items[0].get("price") or {}).get("id")
    return (obj.get("metadata") or {}).get("price_id")


async def apply_plan_limits(db: AsyncSession, tenant: Tenant, plan_type: str) -> SubscriptionLimit:
    """Écrit les limites du plan dans ``subscription_limits`` (insertion ou mise à jour)."""
    source = PAID_PLAN_LIMITS.get(plan_type) or SUBSCRIPTION_LIMITS[normalize_plan(plan_type)]
    row = await get_limits_row(db, tenant.id)
    if row is None:
        row = await ensure_subscription_limits(db, tenant)

    row.plan_type = plan_type
    for limit_type in LIMIT_TYPES:
        setattr(row, limit_type, source[limit_type])
    features = source["features"]
    row.features = dict(features) if isinstance(features, dict) else list(features)
    return row


async def _find_tenant(db: AsyncSession, obj: dict) -> Tenant:
    """Tenant d'un objet Stripe: ``metadata.tenant_id``, sinon client ou abonnement connu."""
    tenant_id = _parse_tenant_id((obj.get("metadata") or {}).get("tenant_id"))
    if tenant_id is not None:
        return await get_tenant(db, tenant_id)

    conditions = []
    if obj.get("customer"):
        conditions.append(Tenant.customer_id == obj["customer"])
    if obj.get("id"):
        conditions.append(Tenant.subscription_id == obj["id"])
    if conditions:
        tenant = (await db.execute(select(Tenant).where(or_(*conditions)))).scalars().first()
        if tenant is not None:
            return tenant
    raise NotFoundError(resource_type="Tenant", resource_id=obj.get("customer") or obj.get("id"))


async def handle_checkout_completed(db: AsyncSession, event: StripeEvent) -> uuid.UUID:
    obj = event.object
    metadata = obj.get("metadata") or {}
    tenant_id = _parse_tenant_id(metadata.get("tenant_id"))
    if tenant_id is None:
        raise BadRequestError(detail="Missing tenant_id in checkout session metadata")

    tenant = await get_tenant(db, tenant_id)
    plan_type = plan_from_price(_price_id(obj), metadata)
    now = datetime.now(UTC)

    tenant.subscription_id = obj.get("subscription")
    tenant.plan_type = plan_type
    tenant.subscription_status = "active"
    tenant.payment_method = "stripe"
    tenant.customer_id = obj.get("customer")
    tenant.subscription_start_date = now
    tenant.subscription_end_date = now + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)

    if plan_type in PAID_PLAN_LIMITS:
        await apply_plan_limits(db, tenant, plan_type)

    record_audit(
        db,
        action="payment_completed",
        entity_type="tenant",
        entity_id=str(tenant.id),
        details={
            "event_id": event.id,
            "plan_type": plan_type,
            "amount": (obj.get("amount_total") or 0) / 100,
            "currency": obj.get("currency"),
            "session_id": obj.get("id"),
        },
        created_by=SYSTEM_ACTOR,
        tenant_id=tenant.id,
    )
    logger.info(f"Checkout terminé: tenant {tenant.id} passe au plan {plan_type}")
    return tenant.id


async def handle_subscription_upsert(db: AsyncSession, event: StripeEvent) -> uuid.UUID:
    obj = event.object
    tenant = await _find_tenant(db, obj)
    metadata = obj.get("metadata") or {}
    plan_type = plan_from_price(_price_id(obj), metadata)

    period_start = obj.get("current_period_start")
    start = datetime.fromtimestamp(period_start, UTC) if period_start else datetime.now(UTC)

    tenant.subscription_id = obj.get("id") or tenant.subscription_id
    tenant.customer_id = obj.get("customer") or tenant.customer_id
    tenant.plan_type = plan_type
    tenant.subscription_status = obj.get("status") or "active"
    tenant.subscription_start_date = start
    tenant.subscription_end_date = start + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)

    await apply_plan_limits(db, tenant, plan_type)
    logger.info(f"Abonnement {tenant.subscription_id} ({event.type}): tenant {tenant.id} -> {plan_type}")
    return tenant.id


async def handle_subscription_deleted(db: AsyncSession, event: StripeEvent) -> uuid.UUID:
    tenant = await _find_tenant(db, event.object)

    tenant.plan_type = "free"
    tenant.subscription_status = "cancelled"
    tenant.subscription_id = None
    tenant.subscription_start_date = None
    tenant.subscription_end_date = None

    await apply_plan_limits(db, tenant, "free")
    logger.info(f"Abonnement annulé: tenant {tenant.id} repasse au plan free")
    return tenant.id


async def handle_invoice_paid(db: AsyncSession, event: StripeEvent) -> None:
    logger.info(f"Facture payée {event.object.get('id')} (aucune modification)")
    return None


EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_upsert,
    "customer.subscription.updated": handle_subscription_upsert,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
}


async def handle_stripe_event(db: AsyncSession, event: StripeEvent) -> WebhookReceived:
    """
    Traite un événement Stripe dont la signature a déjà été vérifiée.

    Pattern:
    1. Dispatch vers le handler du type d'événement (types inconnus journalisés)
    2. Commit puis invalidation du cache d'usage du tenant
    3. Publication de ``practice.subscription.updated``

    En cas d'erreur, la transaction est annulée, un audit ``webhook_error``
    est enregistré et l'exception est propagée.
    """
    with tracer.start_as_current_span("handle_stripe_event") as span:
        span.set_attribute("stripe.event_id", event.id)
        span.set_attribute("stripe.event_type", event.type)

        handler = EVENT_HANDLERS.get(event.type)
        if handler is None:
            logger.info(f"Événement Stripe non géré: {event.type}")
            return WebhookReceived(event_type=event.type)

        try:
            tenant_id = await handler(db, event)
            await db.commit()
        except Exception as e:
            await db.rollback()
            span.record_exception(e)
            logger.error(f"Erreur de traitement du webhook {event.type} ({event.id}): {e}")
            record_audit(
                db,
                action="webhook_error",
                entity_type="stripe_event",
                entity_id=event.id,
                details={"event_type": event.type, "error": str(e)},
                created_by=SYSTEM_ACTOR,
            )
            await db.commit()
            raise

        if tenant_id is not None:
            span.set_attribute("tenant.id", str(tenant_id))
            await invalidate_usage(tenant_id)
            await publish(
                subject_for("subscription", "updated"),
                {
                    "tenant_id": str(tenant_id),
                    "event_type": event.type,
                    "event_id": event.id,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            )
        return WebhookReceived(event_type=event.type)


async def get_subscription_status(db: AsyncSession, tenant_id: uuid.UUID) -> SubscriptionStatus:
    """Plan, statut, dates, limites effectives, fonctionnalités et usage du tenant."""
    tenant = await get_tenant(db, tenant_id)
    plan_type = normalize_plan(tenant.plan_type)
    return SubscriptionStatus(
        tenant_id=tenant.id,
        plan_type=plan_type,
        status=tenant.subscription_status,
        payment_method=tenant.payment_method,
        subscription_start_date=tenant.subscription_start_date,
        subscription_end_date=tenant.subscription_end_date,
        limits=await get_effective_limits(db, tenant),
        features=[
            FeatureResponse.model_validate(f.model_dump()) for f in get_features_for_plan(plan_type)
        ],
        usage=await get_usage_snapshot(db, tenant_id),
    )
