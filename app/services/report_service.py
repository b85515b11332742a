"""Rapports financiers et de stock, et tableau de bord du cabinet."""

import logging
import uuid
from calendar import monthrange
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import cache_get, cache_key_dashboard, cache_set
from app.core.config import settings
from app.core.exceptions import BadRequestError
from app.models.appointment import Appointment
from app.models.patient import Patient
from app.models.pharmacy import Medication, MedicationBatch, StockMovement
from app.models.sale import Sale, SaleItem
from app.schemas.inventory import StockMovementResponse
from app.schemas.report import (
    DashboardResponse,
    MedicationProfit,
    RevenueResponse,
    StockMovementReport,
    TopSellingMedication,
)
from app.services.inventory_service import get_stock_alerts, total_stock
from app.services.sale_service import timeframe_start

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

REVENUE_PERIODS = ("daily", "weekly", "monthly")


def one_month_before(moment: datetime) -> datetime:
    """
    Même instant un mois calendaire plus tôt, jour ramené à la fin du mois si besoin.

    Example:
        >>> one_month_before(datetime(2024, 3, 31, 9, 0, tzinfo=UTC))
        datetime.datetime(2024, 2, 29, 9, 0, tzinfo=datetime.timezone.utc)
    """
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    return moment.replace(year=year, month=month, day=min(moment.day, monthrange(year, month)[1]))


def revenue_period_start(period: str | None, now: datetime | None = None) -> datetime | None:
    """Début de la fenêtre de chiffre d'affaires; ``None`` (depuis toujours) sans période."""
    if not period:
        return None
    if period not in REVENUE_PERIODS:
        raise BadRequestError(detail="Invalid period parameter")

    now = now or datetime.now(UTC)
    if period == "daily":
        return now - timedelta(days=1)
    if period == "weekly":
        return now - timedelta(days=7)
    return one_month_before(now)


async def calculate_profit_and_reorders(
    db: AsyncSession, tenant_id: uuid.UUID
) -> list[MedicationProfit]:
    """
    Rentabilité et suggestion de réapprovisionnement par médicament.

    Le coût d'une ligne de vente est la quantité multipliée par le prix
    d'achat du lot vendu, ou par le prix unitaire du médicament si le lot
    n'a pas de prix d'achat. Les ventes remboursées sont exclues.
    """
    with tracer.start_as_current_span("calculate_profit_and_reorders") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        rows = await db.execute(
            select(
                SaleItem.medication_id,
                func.sum(SaleItem.quantity),
                func.sum(SaleItem.total_price),
                func.sum(
                    SaleItem.quantity
                    * func.coalesce(MedicationBatch.unit_price, Medication.unit_price)
                ),
            )
            .join(Sale, Sale.id == SaleItem.sale_id)
            .join(MedicationBatch, MedicationBatch.id == SaleItem.batch_id)
            .join(Medication, Medication.id == SaleItem.medication_id)
            .where(SaleItem.tenant_id == tenant_id, Sale.payment_status != "refunded")
            .group_by(SaleItem.medication_id)
        )
        sold = {
            medication_id: (int(quantity or 0), Decimal(sales or 0), Decimal(cost or 0))
            for medication_id, quantity, sales, cost in rows.all()
        }

        medications = (
            await db.execute(
                select(Medication)
                .where(Medication.tenant_id == tenant_id, Medication.is_active.is_(True))
                .order_by(Medication.name)
            )
        ).scalars().all()

        today = date.today()
        report = []
        for medication in medications:
            quantity_sold, total_sales, total_cost = sold.get(
                medication.id, (0, Decimal("0"), Decimal("0"))
            )
            profit = total_sales - total_cost
            margin = float(profit / total_cost * 100) if total_cost else 0.0
            stock = total_stock(medication, today)
            report.append(
                MedicationProfit(
                    medication_id=medication.id,
                    name=medication.name,
                    quantity_sold=quantity_sold,
                    total_sales=total_sales,
                    total_cost=total_cost,
                    profit=profit,
                    profit_margin=round(margin, 2),
                    current_stock=stock,
                    reorder_suggested=stock <= settings.LOW_STOCK_THRESHOLD,
                )
            )

        span.set_attribute("report.medications", len(report))
        return report


async def get_top_selling_medications(
    db: AsyncSession, tenant_id: uuid.UUID, limit: int = 10
) -> list[TopSellingMedication]:
    quantity_sold = func.sum(SaleItem.quantity).label("quantity_sold")
    rows = await db.execute(
        select(
            SaleItem.medication_id,
            Medication.name,
            quantity_sold,
            func.sum(SaleItem.total_price),
        )
        .join(Medication, Medication.id == SaleItem.medication_id)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .where(SaleItem.tenant_id == tenant_id, Sale.payment_status != "refunded")
        .group_by(SaleItem.medication_id, Medication.name)
        .order_by(quantity_sold.desc())
        .limit(limit)
    )
    return [
        TopSellingMedication(
            medication_id=medication_id,
            name=name,
            quantity_sold=int(quantity),
            revenue=Decimal(revenue or 0),
        )
        for medication_id, name, quantity, revenue in rows.all()
    ]


async def _paid_revenue(
    db: AsyncSession, tenant_id: uuid.UUID, since: datetime | None
) -> tuple[Decimal, int]:
    filters = [Sale.tenant_id == tenant_id, Sale.payment_status == "paid"]
    if since is not None:
        filters.append(Sale.created_at >= since)
    row = (
        await db.execute(
            select(func.coalesce(func.sum(Sale.total_amount), 0), func.count(Sale.id)).where(
                *filters
            )
        )
    ).one()
    return Decimal(row[0]), int(row[1])


async def get_revenue(
    db: AsyncSession, tenant_id: uuid.UUID, period: str | None = None
) -> RevenueResponse:
    """
    Chiffre d'affaires des ventes payées depuis maintenant moins 1 jour,
    7 jours ou 1 mois calendaire; depuis toujours sans période.

    Raises:
        BadRequestError: Période inconnue
    """
    since = revenue_period_start(period)
    revenue, count = await _paid_revenue(db, tenant_id, since)
    return RevenueResponse(period=period or None, since=since, revenue=revenue, sale_count=count)


async def get_stock_movement_report(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    medication_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> StockMovementReport:
    filters = [StockMovement.tenant_id == tenant_id]
    if medication_id is not None:
        filters.append(StockMovement.medication_id == medication_id)
    if start is not None:
        filters.append(StockMovement.created_at >= start)
    if end is not None:
        filters.append(StockMovement.created_at <= end)

    result = await db.execute(
        select(StockMovement).where(*filters).order_by(StockMovement.created_at.desc())
    )
    movements = [StockMovementResponse.model_validate(m) for m in result.scalars().all()]
    return StockMovementReport(
        medication_id=medication_id,
        start=start,
        end=end,
        movements=movements,
        total_in=sum(m.quantity for m in movements if m.quantity > 0),
        total_out=-sum(m.quantity for m in movements if m.quantity < 0),
    )


async def get_dashboard(db: AsyncSession, tenant_id: uuid.UUID) -> DashboardResponse:
    """
    Indicateurs du tableau de bord, mis en cache Redis (CACHE_TTL_DASHBOARD).

    Le cache est invalidé avec le snapshot d'usage après chaque écriture
    qui modifie un compteur du tenant.
    """
    with tracer.start_as_current_span("get_dashboard") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        cache_key = cache_key_dashboard(tenant_id)
        cached_json = await cache_get(cache_key)
        if cached_json:
            span.add_event("Dashboard servi depuis le cache")
            return DashboardResponse.model_validate_json(cached_json)

        total_patients = await db.scalar(
            select(func.count())
            .select_from(Patient)
            .where(Patient.tenant_id == tenant_id, Patient.patient_type == "guest")
        )
        appointments_today = await db.scalar(
            select(func.count())
            .select_from(Appointment)
            .where(
                Appointment.tenant_id == tenant_id,
                Appointment.date == date.today(),
                Appointment.status != "cancelled",
            )
        )
        pending_appointments = await db.scalar(
            select(func.count())
            .select_from(Appointment)
            .where(
                Appointment.tenant_id == tenant_id,
                Appointment.payment_status == "unpaid",
                Appointment.status != "cancelled",
            )
        )
        pending_sales = await db.scalar(
            select(func.count())
            .select_from(Sale)
            .where(Sale.tenant_id == tenant_id, Sale.payment_status.in_(("unpaid", "pending")))
        )
        alerts = await get_stock_alerts(db, tenant_id)
        revenue_today, _ = await _paid_revenue(db, tenant_id, timeframe_start("today"))
        revenue_month, _ = await _paid_revenue(db, tenant_id, timeframe_start("month"))

        dashboard = DashboardResponse(
            total_patients=total_patients or 0,
            appointments_today=appointments_today or 0,
            pending_appointment_payments=pending_appointments or 0,
            pending_sale_payments=pending_sales or 0,
            low_stock_count=len(alerts.low_stock),
            revenue_today=revenue_today,
            revenue_month=revenue_month,
            generated_at=datetime.now(UTC),
        )
        await cache_set(cache_key, dashboard.model_dump_json(), ttl=settings.CACHE_TTL_DASHBOARD)
        return dashboard
