"""Tests unitaires des rapports (chiffre d'affaires, mouvements, tableau de bord)."""

import uuid
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from app.core.exceptions import BadRequestError
from app.models.pharmacy import Medication, MedicationBatch, StockMovement
from app.schemas.report import DashboardResponse
from app.services import report_service
from app.services.report_service import (
    get_revenue,
    get_stock_movement_report,
    one_month_before,
    revenue_period_start,
)


def revenue_db(total: str, count: int):
    db = AsyncMock()
    result = MagicMock()
    result.one.return_value = (Decimal(total), count)
    db.execute.return_value = result
    return db


class TestRevenue:
    async def test_invalid_period(self):
        db = AsyncMock()

        with pytest.raises(BadRequestError) as exc_info:
            await get_revenue(db, uuid.uuid4(), "quarterly")

        assert "Invalid period parameter" in exc_info.value.to_dict()["detail"]

        db.execute.assert_not_called()

    async def test_weekly_window(self):
        before = datetime.now(UTC)

        revenue = await get_revenue(revenue_db("12500.50", 42), uuid.uuid4(), "weekly")

        assert revenue.revenue == Decimal("12500.50")
        assert revenue.sale_count == 42
        assert before - timedelta(days=7) <= revenue.since <= datetime.now(UTC) - timedelta(days=7)

    async def test_all_time(self):
        revenue = await get_revenue(revenue_db("0", 0), uuid.uuid4())

        assert revenue.since is None
        assert revenue.revenue == Decimal("0")

    async def test_empty_period_is_all_time(self):
        revenue = await get_revenue(revenue_db("300.00", 3), uuid.uuid4(), "")

        assert revenue.period is None
        assert revenue.since is None
        assert revenue.sale_count == 3

    async def test_monthly_window_is_calendar_month(self):
        """Le 17 mai, la fenêtre mensuelle commence le 17 avril (30 jours, pas 31)."""
        now = datetime(2024, 5, 17, 10, 30, tzinfo=UTC)

        assert revenue_period_start("monthly", now) == datetime(2024, 4, 17, 10, 30, tzinfo=UTC)
        assert revenue_period_start("daily", now) == now - timedelta(days=1)
        assert revenue_period_start(None, now) is None


class TestOneMonthBefore:
    @pytest.mark.parametrize(
        ("moment", "expected"),
        [
            (datetime(2024, 3, 31, 9, tzinfo=UTC), datetime(2024, 2, 29, 9, tzinfo=UTC)),
            (datetime(2023, 3, 31, 9, tzinfo=UTC), datetime(2023, 2, 28, 9, tzinfo=UTC)),
            (datetime(2024, 1, 15, 9, tzinfo=UTC), datetime(2023, 12, 15, 9, tzinfo=UTC)),
            (datetime(2024, 7, 31, 9, tzinfo=UTC), datetime(2024, 6, 30, 9, tzinfo=UTC)),
        ],
    )
    def test_month_arithmetic(self, moment, expected):
        assert one_month_before(moment) == expected


class TestStockMovementReport:
    async def test_totals_in_and_out(self):
        tenant_id = uuid.uuid4()
        medication_id = uuid.uuid4()
        batch_id = uuid.uuid4()
        now = datetime.now(UTC)
        movements = [
            StockMovement(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                medication_id=medication_id,
                batch_id=batch_id,
                movement_type=movement_type,
                quantity=quantity,
                created_at=now,
            )
            for movement_type, quantity in [("restock", 100), ("sale", -3), ("sale", -7)]
        ]
        db = AsyncMock()
        result = MagicMock()
        result.scalars.return_value.all.return_value = movements
        db.execute.return_value = result

        report = await get_stock_movement_report(db, tenant_id, medication_id)

        assert report.total_in == 100
        assert report.total_out == 10
        assert len(report.movements) == 3


class TestDashboard:
    async def test_served_from_cache(self):
        cached = DashboardResponse(
            total_patients=12,
            appointments_today=3,
            pending_appointment_payments=1,
            pending_sale_payments=0,
            low_stock_count=2,
            revenue_today=Decimal("800.00"),
            revenue_month=Decimal("24000.00"),
            generated_at=datetime.now(UTC),
        )
        db = AsyncMock()
        with patch.object(
            report_service, "cache_get", AsyncMock(return_value=cached.model_dump_json())
        ):
            dashboard = await report_service.get_dashboard(db, uuid.uuid4())

        assert dashboard.total_patients == 12
        assert dashboard.revenue_month == Decimal("24000.00")
        db.scalar.assert_not_called()


def medication_with_stock(tenant_id, name: str, quantity: int) -> Medication:
    medication = Medication(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        name=name,
        category="analgesic",
        dosage_form="tablet",
        strength="500mg",
        unit_price=Decimal("5.00"),
        is_active=True,
    )
    medication.batches.append(
        MedicationBatch(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            medication_id=medication.id,
            batch_number=f"{name[:3].upper()}-1",
            expiry_date=date.today() + timedelta(days=180),
            quantity=quantity,
        )
    )
    return medication


def profit_db(sold_rows, medications):
    sold = MagicMock()
    sold.all.return_value = sold_rows
    catalog = MagicMock()
    catalog.scalars.return_value.all.return_value = medications
    db = AsyncMock()
    db.execute.side_effect = [sold, catalog]
    return db


class TestProfitAndReorders:
    async def test_profit_and_margin(self):
        tenant_id = uuid.uuid4()
        paracetamol = medication_with_stock(tenant_id, "Paracetamol", quantity=120)
        db = profit_db(
            [(paracetamol.id, 30, Decimal("450.00"), Decimal("240.00"))], [paracetamol]
        )

        [line] = await report_service.calculate_profit_and_reorders(db, tenant_id)

        assert line.quantity_sold == 30
        assert line.profit == Decimal("210.00")
        assert line.profit_margin == 87.5
        assert line.current_stock == 120
        assert line.reorder_suggested is False

    async def test_zero_cost_margin_and_unsold_reorder(self):
        """Coût nul : marge 0; un médicament jamais vendu à faible stock est à recommander."""
        tenant_id = uuid.uuid4()
        donated = medication_with_stock(tenant_id, "Donated ORS", quantity=50)
        unsold = medication_with_stock(tenant_id, "Zinc", quantity=3)
        db = profit_db([(donated.id, 10, Decimal("100.00"), Decimal("0"))], [donated, unsold])

        donated_line, unsold_line = await report_service.calculate_profit_and_reorders(
            db, tenant_id
        )

        assert donated_line.profit == Decimal("100.00")
        assert donated_line.profit_margin == 0.0
        assert unsold_line.quantity_sold == 0
        assert unsold_line.total_cost == Decimal("0")
        assert unsold_line.reorder_suggested is True

    async def test_cost_uses_batch_purchase_price(self):
        """Le coût d'une ligne est basé sur le prix d'achat du lot, sinon celui du médicament."""
        db = profit_db([], [])

        await report_service.calculate_profit_and_reorders(db, uuid.uuid4())

        query = str(db.execute.call_args_list[0].args[0].compile(dialect=postgresql.dialect()))
        assert "coalesce(medication_batches.unit_price, medications.unit_price)" in query
        assert "sales.payment_status != " in query
