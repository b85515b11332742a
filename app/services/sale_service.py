"""Service métier des ventes au comptoir.

``create_sale`` est la seule écriture multi-tables critique du service:
la vente, ses lignes, la décrémentation des lots et les mouvements de stock
sont écrits dans une transaction unique. Les lots sont verrouillés
(``SELECT ... FOR UPDATE``) dans l'ordre de leur id pour éviter les
interblocages entre ventes concurrentes, et la contrainte CHECK de
``medication_batches`` garantit qu'aucun lot ne passe sous zéro.
"""

import logging
import time
import uuid
from collections import defaultdict
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from opentelemetry import metrics, trace
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.events import publish, subject_for
from app.core.exceptions import BadRequestError, InsufficientStockError, NotFoundError
from app.core.retry import retry_async_operation
from app.core.security import StaffContext
from app.core.ttl_cache import sales_cache
from app.models.patient import Patient
from app.models.pharmacy import Medication, MedicationBatch, StockMovement
from app.models.sale import Sale, SaleItem
from app.schemas.sale import (
    SaleCreate,
    SaleListItem,
    SaleListQuery,
    SaleListResponse,
    SaleResponse,
    SalesMetrics,
)
from app.services.patient_service import get_or_create_quick_sale_patient, verify_patient_exists
from app.services.usage_service import enforce_usage_limit, invalidate_usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

meter = metrics.get_meter("core-africare-practice.sales")

sales_created_counter = meter.create_counter(
    name="sales_created_total",
    description="Total number of committed sales",
    unit="1",
)

sale_amount_histogram = meter.create_histogram(
    name="sale_amount",
    description="Total amount of committed sales",
    unit="KSh",
)

sale_transaction_duration = meter.create_histogram(
    name="sale_transaction_duration_seconds",
    description="Duration of the sale transaction including retries",
    unit="s",
)

TRANSACTION_LIMIT_MESSAGE = (
    "Transaction limit reached ({current}/{limit}). "
    "Please upgrade your plan to continue making sales."
)


def timeframe_start(timeframe: str, now: datetime | None = None) -> datetime | None:
    """
    Début de la fenêtre ``today|week|month|year``; ``None`` pour ``all``.

    Example:
        >>> timeframe_start("today", datetime(2024, 5, 3, 15, 0, tzinfo=UTC))
        datetime.datetime(2024, 5, 3, 0, 0, tzinfo=datetime.timezone.utc)
    """
    now = now or datetime.now(UTC)
    if timeframe == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "week":
        return now - timedelta(days=7)
    if timeframe == "month":
        return now - timedelta(days=30)
    if timeframe == "year":
        return now - timedelta(days=365)
    return None


def _requested_per_batch(data: SaleCreate) -> dict[uuid.UUID, int]:
    """Quantités demandées agrégées par lot (un lot peut apparaître sur plusieurs lignes)."""
    requested: dict[uuid.UUID, int] = defaultdict(int)
    for item in data.items:
        requested[item.batch_id] += item.quantity
    return dict(requested)


async def _persist_sale(
    db: AsyncSession,
    ctx: StaffContext,
    patient_id: uuid.UUID | None,
    data: SaleCreate,
) -> Sale:
    """
    Écrit la vente dans une transaction unique (rejouable).

    Toute exception annule la transaction en entier avant d'être propagée.
    """
    try:
        requested = _requested_per_batch(data)
        result = await db.execute(
            select(MedicationBatch)
            .where(
                MedicationBatch.id.in_(requested.keys()),
                MedicationBatch.tenant_id == ctx.tenant_id,
            )
            .order_by(MedicationBatch.id)
            .with_for_update()
        )
        batches = {batch.id: batch for batch in result.scalars().all()}

        today = date.today()
        for item in data.items:
            batch = batches.get(item.batch_id)
            if batch is None:
                raise NotFoundError(resource_type="MedicationBatch", resource_id=item.batch_id)
            if batch.medication_id != item.medication_id:
                raise BadRequestError(
                    detail=(
                        f"Batch {item.batch_id} does not belong to medication {item.medication_id}"
                    )
                )
            if batch.expiry_date < today:
                raise BadRequestError(detail=f"Batch {batch.batch_number} has expired")

        for batch_id, quantity in requested.items():
            available = batches[batch_id].quantity
            if available < quantity:
                raise InsufficientStockError(batch_id, requested=quantity, available=available)

        sale = Sale(
            tenant_id=ctx.tenant_id,
            patient_id=patient_id,
            payment_method=data.payment_method,
            payment_status=data.payment_status,
            transaction_id=data.transaction_id,
            created_by=ctx.profile_id,
            total_amount=Decimal("0"),
        )
        total = Decimal("0")
        for item in data.items:
            line_total = item.unit_price * item.quantity
            total += line_total
            sale.items.append(
                SaleItem(
                    tenant_id=ctx.tenant_id,
                    medication_id=item.medication_id,
                    batch_id=item.batch_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=line_total,
                )
            )
        sale.total_amount = total
        db.add(sale)
        await db.flush()

        for batch_id, quantity in requested.items():
            batch = batches[batch_id]
            batch.quantity -= quantity
            db.add(
                StockMovement(
                    tenant_id=ctx.tenant_id,
                    medication_id=batch.medication_id,
                    batch_id=batch_id,
                    movement_type="sale",
                    quantity=-quantity,
                    reference_id=sale.id,
                    reason=f"Sale #{sale.id}",
                    created_by=ctx.profile_id,
                )
            )

        await db.execute(
            update(Medication)
            .where(
                Medication.tenant_id == ctx.tenant_id,
                Medication.id.in_({item.medication_id for item in data.items}),
            )
            .values(last_sold_at=datetime.now(UTC))
        )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(sale, attribute_names=["items"])
    return sale


async def create_sale(db: AsyncSession, ctx: StaffContext, data: SaleCreate) -> SaleResponse:
    """
    Enregistre une vente de médicaments.

    Pattern:
    1. Limite mensuelle de transactions du plan
    2. Patient: vérifié s'il est donné, patient "vente rapide" si ``quick_sale``
    3. Au moins une ligne
    4. Transaction unique (lots verrouillés, stock vérifié puis décrémenté),
       rejouée sur erreur transitoire de la base
    5. Après commit: caches invalidés et événement publié

    Raises:
        UsageLimitExceededError: Limite de transactions atteinte
        NotFoundError: Patient ou lot absent du tenant
        BadRequestError: Vente sans ligne, lot expiré ou d'un autre médicament
        InsufficientStockError: Quantité demandée supérieure au stock d'un lot
    """
    with tracer.start_as_current_span("create_sale") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))
        span.set_attribute("sale.item_count", len(data.items))

        await enforce_usage_limit(
            db, ctx.tenant_id, "max_transactions_per_month", TRANSACTION_LIMIT_MESSAGE
        )

        patient_id = None
        if data.patient_id is not None:
            patient_id = (await verify_patient_exists(db, ctx.tenant_id, data.patient_id)).id
        elif data.quick_sale:
            patient_id = await get_or_create_quick_sale_patient(db, ctx.tenant_id)

        if not data.items:
            raise BadRequestError(detail="A sale requires at least one item")

        started = time.perf_counter()
        try:
            sale = await retry_async_operation(_persist_sale, db, ctx, patient_id, data)
        except InsufficientStockError:
            span.add_event("Stock insuffisant")
            raise
        finally:
            sale_transaction_duration.record(time.perf_counter() - started)

        span.set_attribute("sale.id", str(sale.id))
        span.set_attribute("sale.total_amount", float(sale.total_amount))
        sales_created_counter.add(1, {"payment_method": sale.payment_method or "unknown"})
        sale_amount_histogram.record(float(sale.total_amount))

        sales_cache.invalidate_tenant(ctx.tenant_id)
        await invalidate_usage(ctx.tenant_id)
        await publish(
            subject_for("sale", "created"),
            {
                "tenant_id": str(ctx.tenant_id),
                "sale_id": str(sale.id),
                "patient_id": str(patient_id) if patient_id else None,
                "total_amount": str(sale.total_amount),
                "payment_status": sale.payment_status,
                "created_by": str(ctx.profile_id),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

        logger.info(f"Vente {sale.id} enregistrée ({sale.total_amount}) pour le tenant {ctx.tenant_id}")
        return SaleResponse.model_validate(sale)


async def _get_sale(db: AsyncSession, tenant_id: uuid.UUID, sale_id: uuid.UUID) -> Sale:
    result = await db.execute(select(Sale).where(Sale.id == sale_id, Sale.tenant_id == tenant_id))
    sale = result.scalar_one_or_none()
    if sale is None:
        raise NotFoundError(resource_type="Sale", resource_id=sale_id)
    return sale


async def get_sale(db: AsyncSession, tenant_id: uuid.UUID, sale_id: uuid.UUID) -> SaleResponse:
    return SaleResponse.model_validate(await _get_sale(db, tenant_id, sale_id))


async def update_sale_status(
    db: AsyncSession,
    ctx: StaffContext,
    sale_id: uuid.UUID,
    payment_status: str,
    payment_method: str | None = None,
) -> SaleResponse:
    """Met à jour le statut (et éventuellement le moyen) de paiement d'une vente."""
    with tracer.start_as_current_span("update_sale_status") as span:
        span.set_attribute("sale.id", str(sale_id))
        span.set_attribute("sale.payment_status", payment_status)

        sale = await _get_sale(db, ctx.tenant_id, sale_id)
        previous = sale.payment_status
        sale.payment_status = payment_status
        if payment_method is not None:
            sale.payment_method = payment_method
        await db.commit()
        await db.refresh(sale)

        sales_cache.invalidate_tenant(ctx.tenant_id)
        if previous != payment_status:
            await invalidate_usage(ctx.tenant_id)
        await publish(
            subject_for("sale", "updated"),
            {
                "tenant_id": str(ctx.tenant_id),
                "sale_id": str(sale.id),
                "previous_status": previous,
                "payment_status": payment_status,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        return SaleResponse.model_validate(sale)


def _sales_cache_key(tenant_id: uuid.UUID, query: SaleListQuery) -> str:
    return f"sales-{tenant_id}-{query.model_dump_json()}"


async def list_sales(
    db: AsyncSession, tenant_id: uuid.UUID, query: SaleListQuery
) -> SaleListResponse:
    """
    Liste paginée des ventes, mise en cache mémoire par tenant (5 min).

    La recherche porte sur le nom ou le téléphone du patient.
    """
    cache_key = _sales_cache_key(tenant_id, query)
    cached = sales_cache.get(cache_key, tenant_id)
    if cached is not None:
        return cached

    with tracer.start_as_current_span("list_sales") as span:
        span.set_attribute("tenant.id", str(tenant_id))
        span.set_attribute("sales.timeframe", query.timeframe)

        filters = [Sale.tenant_id == tenant_id]
        since = timeframe_start(query.timeframe)
        if since is not None:
            filters.append(Sale.created_at >= since)
        if query.payment_status:
            filters.append(Sale.payment_status == query.payment_status)
        if query.search:
            pattern = f"%{query.search}%"
            filters.append(
                or_(Patient.full_name.ilike(pattern), Patient.phone_number.ilike(pattern))
            )

        base = select(Sale).outerjoin(Patient, Patient.id == Sale.patient_id).where(*filters)
        total = await db.scalar(select(func.count()).select_from(base.subquery()))

        rows = await db.execute(
            base.add_columns(Patient.full_name, Patient.phone_number)
            .order_by(Sale.created_at.desc())
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        )
        items = []
        for sale, patient_name, patient_phone in rows.all():
            item = SaleListItem.model_validate(sale)
            item.patient_name = patient_name
            item.patient_phone = patient_phone
            items.append(item)

        response = SaleListResponse(
            items=items, total=total or 0, page=query.page, page_size=query.page_size
        )
        sales_cache.set(cache_key, response, tenant_id)
        return response


async def get_sales_metrics(
    db: AsyncSession, tenant_id: uuid.UUID, timeframe: str = "all"
) -> SalesMetrics:
    """Chiffre d'affaires des ventes payées sur la période, par moyen de paiement."""
    filters = [Sale.tenant_id == tenant_id, Sale.payment_status == "paid"]
    since = timeframe_start(timeframe)
    if since is not None:
        filters.append(Sale.created_at >= since)

    result = await db.execute(
        select(Sale.payment_method, func.count(Sale.id), func.coalesce(func.sum(Sale.total_amount), 0))
        .where(*filters)
        .group_by(Sale.payment_method)
    )

    by_method: dict[str, Decimal] = {}
    count = 0
    revenue = Decimal("0")
    for method, method_count, amount in result.all():
        amount = Decimal(amount)
        by_method[method or "unknown"] = amount
        count += method_count
        revenue += amount

    average = (revenue / count).quantize(Decimal("0.01")) if count else Decimal("0")
    return SalesMetrics(
        timeframe=timeframe,
        total_revenue=revenue,
        sale_count=count,
        average_sale=average,
        revenue_by_payment_method=by_method,
    )
