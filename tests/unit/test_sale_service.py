"""Tests unitaires du service des ventes (transaction de vente, fenêtres de temps)."""

import uuid
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from app.core.exceptions import BadRequestError, InsufficientStockError, NotFoundError
from app.core.security import StaffContext
from app.core.ttl_cache import sales_cache
from app.models.pharmacy import MedicationBatch, StockMovement
from app.models.sale import Sale
from app.schemas.sale import SaleCreate, SaleItemCreate, SaleListQuery
from app.services import sale_service
from app.services.sale_service import _persist_sale, _requested_per_batch, timeframe_start

MEDICATION_ID = uuid.uuid4()


@pytest.fixture
def ctx():
    return StaffContext(
        user_id="kc-1",
        profile_id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        role="pharmacist",
        email="pharma@clinic.co.ke",
        full_name="Kiprop Cheruiyot",
    )


def make_batch(ctx, quantity=10, expiry=None, medication_id=MEDICATION_ID) -> MedicationBatch:
    return MedicationBatch(
        id=uuid.uuid4(),
        tenant_id=ctx.tenant_id,
        medication_id=medication_id,
        batch_number="AMX-2024-01",
        expiry_date=expiry or date.today() + timedelta(days=365),
        quantity=quantity,
    )


def make_db(batches: list[MedicationBatch]):
    """Session mockée : le SELECT ... FOR UPDATE renvoie ``batches``."""
    db = AsyncMock()
    added = []

    def add(obj):
        if isinstance(obj, Sale):
            obj.id = uuid.uuid4()
        added.append(obj)

    db.add = MagicMock(side_effect=add)
    locked = MagicMock()
    locked.scalars.return_value.all.return_value = batches
    db.execute.side_effect = [locked, MagicMock()]
    db.added = added
    return db


def sale_request(*lines: tuple[MedicationBatch, int, str], **kwargs) -> SaleCreate:
    return SaleCreate(
        items=[
            SaleItemCreate(
                medication_id=batch.medication_id,
                batch_id=batch.id,
                quantity=quantity,
                unit_price=Decimal(price),
            )
            for batch, quantity, price in lines
        ],
        **kwargs,
    )


class TestTimeframeStart:
    NOW = datetime(2024, 5, 3, 15, 30, tzinfo=UTC)

    def test_today(self):
        assert timeframe_start("today", self.NOW) == datetime(2024, 5, 3, tzinfo=UTC)

    @pytest.mark.parametrize(("timeframe", "days"), [("week", 7), ("month", 30), ("year", 365)])
    def test_rolling_windows(self, timeframe, days):
        assert timeframe_start(timeframe, self.NOW) == self.NOW - timedelta(days=days)

    def test_all(self):
        assert timeframe_start("all", self.NOW) is None


class TestPersistSale:
    def test_requested_quantities_aggregated_per_batch(self, ctx):
        batch = make_batch(ctx)
        data = sale_request((batch, 2, "50.00"), (batch, 3, "50.00"))

        assert _requested_per_batch(data) == {batch.id: 5}

    async def test_sale_decrements_stock_and_records_movements(self, ctx):
        batch_a = make_batch(ctx, quantity=10)
        batch_b = make_batch(ctx, quantity=4)
        db = make_db([batch_a, batch_b])
        data = sale_request((batch_a, 3, "25.50"), (batch_b, 4, "10.00"), payment_method="mpesa")

        sale = await _persist_sale(db, ctx, None, data)

        assert sale.total_amount == Decimal("116.50")
        assert [item.total_price for item in sale.items] == [Decimal("76.50"), Decimal("40.00")]
        assert batch_a.quantity == 7
        assert batch_b.quantity == 0
        movements = [obj for obj in db.added if isinstance(obj, StockMovement)]
        assert {(m.batch_id, m.quantity) for m in movements} == {(batch_a.id, -3), (batch_b.id, -4)}
        assert all(m.movement_type == "sale" and m.reference_id == sale.id for m in movements)
        assert movements[0].reason == f"Sale #{sale.id}"
        db.commit.assert_awaited_once()
        db.rollback.assert_not_called()

    async def test_insufficient_stock_rolls_back_everything(self, ctx):
        """Deux lignes du même lot dépassant le stock : rien n'est décrémenté."""
        batch = make_batch(ctx, quantity=4)
        other = make_batch(ctx, quantity=10)
        db = make_db([batch, other])
        data = sale_request((other, 2, "5.00"), (batch, 3, "5.00"), (batch, 2, "5.00"))

        with pytest.raises(InsufficientStockError) as exc_info:
            await _persist_sale(db, ctx, None, data)

        assert exc_info.value.to_dict()["requested"] == 5
        assert exc_info.value.to_dict()["available"] == 4
        assert batch.quantity == 4
        assert other.quantity == 10
        db.rollback.assert_awaited_once()
        db.commit.assert_not_called()
        db.add.assert_not_called()

    async def test_expired_batch_rejected(self, ctx):
        batch = make_batch(ctx, expiry=date.today() - timedelta(days=1))
        db = make_db([batch])

        with pytest.raises(BadRequestError) as exc_info:
            await _persist_sale(db, ctx, None, sale_request((batch, 1, "5.00")))

        assert "has expired" in exc_info.value.to_dict()["detail"]

        db.rollback.assert_awaited_once()

    async def test_batch_of_another_medication_rejected(self, ctx):
        batch = make_batch(ctx)
        db = make_db([batch])
        data = SaleCreate(
            items=[
                SaleItemCreate(
                    medication_id=uuid.uuid4(),
                    batch_id=batch.id,
                    quantity=1,
                    unit_price=Decimal("5.00"),
                )
            ]
        )

        with pytest.raises(BadRequestError) as exc_info:
            await _persist_sale(db, ctx, None, data)

        assert "does not belong" in exc_info.value.to_dict()["detail"]

    async def test_unknown_batch(self, ctx):
        """Un lot d'un autre tenant n'est pas verrouillé donc introuvable."""
        batch = make_batch(ctx)
        db = make_db([])

        with pytest.raises(NotFoundError):
            await _persist_sale(db, ctx, None, sale_request((batch, 1, "5.00")))


class TestCreateSale:
    @pytest.fixture(autouse=True)
    def side_effects(self):
        with (
            patch.object(sale_service, "enforce_usage_limit", AsyncMock()) as enforce,
            patch.object(sale_service, "invalidate_usage", AsyncMock()) as invalidate,
            patch.object(sale_service, "publish", AsyncMock()) as publish,
        ):
            yield {"enforce": enforce, "invalidate": invalidate, "publish": publish}

    async def test_sale_without_items_rejected(self, ctx):
        with pytest.raises(BadRequestError) as exc_info:
            await sale_service.create_sale(AsyncMock(), ctx, SaleCreate(items=[]))

        assert "at least one item" in exc_info.value.to_dict()["detail"]

    async def test_quick_sale_uses_system_patient(self, ctx, side_effects):
        quick_patient_id = uuid.uuid4()
        now = datetime.now(UTC)
        sale = Sale(
            id=uuid.uuid4(),
            tenant_id=ctx.tenant_id,
            patient_id=quick_patient_id,
            total_amount=Decimal("30.00"),
            payment_method="cash",
            payment_status="paid",
            created_by=ctx.profile_id,
            created_at=now,
            updated_at=now,
        )
        batch = make_batch(ctx)
        sales_cache.set(f"sales-{ctx.tenant_id}-all", ["stale"], tenant_id=ctx.tenant_id)

        with (
            patch.object(
                sale_service,
                "get_or_create_quick_sale_patient",
                AsyncMock(return_value=quick_patient_id),
            ),
            patch.object(
                sale_service, "retry_async_operation", AsyncMock(return_value=sale)
            ) as retry,
        ):
            response = await sale_service.create_sale(
                AsyncMock(), ctx, sale_request((batch, 3, "10.00"), quick_sale=True)
            )

        assert response.patient_id == quick_patient_id
        assert retry.call_args[0][3] == quick_patient_id
        assert sales_cache.get(f"sales-{ctx.tenant_id}-all", tenant_id=ctx.tenant_id) is None
        side_effects["invalidate"].assert_awaited_once_with(ctx.tenant_id)
        subject, payload = side_effects["publish"].call_args[0]
        assert subject == "practice.sale.created"
        assert payload["sale_id"] == str(sale.id)
        assert payload["total_amount"] == "30.00"

    async def test_stock_error_not_published(self, ctx, side_effects):
        batch = make_batch(ctx)
        with patch.object(
            sale_service,
            "retry_async_operation",
            AsyncMock(side_effect=InsufficientStockError(batch.id, requested=5, available=1)),
        ):
            with pytest.raises(InsufficientStockError):
                await sale_service.create_sale(
                    AsyncMock(), ctx, sale_request((batch, 5, "10.00"))
                )

        side_effects["publish"].assert_not_called()
        side_effects["invalidate"].assert_not_called()


def paid_sale(ctx, amount="90.00") -> Sale:
    now = datetime.now(UTC)
    return Sale(
        id=uuid.uuid4(),
        tenant_id=ctx.tenant_id,
        patient_id=uuid.uuid4(),
        total_amount=Decimal(amount),
        payment_method="mpesa",
        payment_status="paid",
        created_by=ctx.profile_id,
        created_at=now,
        updated_at=now,
    )


def listing_db(rows, total):
    db = AsyncMock()
    db.scalar.return_value = total
    result = MagicMock()
    result.all.return_value = rows
    db.execute.return_value = result
    return db


class TestListSales:
    async def test_second_call_served_from_cache(self, ctx):
        sale = paid_sale(ctx)
        db = listing_db([(sale, "Wanjiku Kamau", "+254712345678")], total=1)
        query = SaleListQuery(timeframe="week")

        first = await sale_service.list_sales(db, ctx.tenant_id, query)
        second = await sale_service.list_sales(db, ctx.tenant_id, query)

        assert first.total == 1
        assert first.items[0].patient_name == "Wanjiku Kamau"
        assert first.items[0].patient_phone == "+254712345678"
        assert second == first
        assert db.execute.await_count == 1

    async def test_search_on_patient_name_and_phone(self, ctx):
        db = listing_db([], total=0)

        response = await sale_service.list_sales(
            db, ctx.tenant_id, SaleListQuery(search="0712", page=2, page_size=10)
        )

        assert response.items == []
        assert response.page == 2
        query = str(db.execute.call_args.args[0].compile(dialect=postgresql.dialect()))
        assert "guest_patients.full_name ILIKE" in query
        assert "guest_patients.phone_number ILIKE" in query
        assert "ORDER BY sales.created_at DESC" in query

    async def test_create_sale_invalidates_listing(self, ctx):
        """Une vente enregistrée rend la liste en cache obsolète pour le tenant."""
        db = listing_db([], total=0)
        query = SaleListQuery()
        await sale_service.list_sales(db, ctx.tenant_id, query)
        batch = make_batch(ctx)

        with (
            patch.object(sale_service, "enforce_usage_limit", AsyncMock()),
            patch.object(sale_service, "invalidate_usage", AsyncMock()),
            patch.object(sale_service, "publish", AsyncMock()),
            patch.object(
                sale_service, "retry_async_operation", AsyncMock(return_value=paid_sale(ctx))
            ),
        ):
            await sale_service.create_sale(AsyncMock(), ctx, sale_request((batch, 3, "30.00")))

        db.scalar.return_value = 1
        db.execute.return_value.all.return_value = [(paid_sale(ctx), None, None)]
        refreshed = await sale_service.list_sales(db, ctx.tenant_id, query)

        assert refreshed.total == 1
        assert db.execute.await_count == 2


class TestSalesMetrics:
    async def test_revenue_by_payment_method(self, ctx):
        db = AsyncMock()
        result = MagicMock()
        result.all.return_value = [("cash", 3, Decimal("300.00")), (None, 1, Decimal("50.00"))]
        db.execute.return_value = result

        metrics = await sale_service.get_sales_metrics(db, ctx.tenant_id, "month")

        assert metrics.timeframe == "month"
        assert metrics.total_revenue == Decimal("350.00")
        assert metrics.sale_count == 4
        assert metrics.average_sale == Decimal("87.50")
        assert metrics.revenue_by_payment_method == {
            "cash": Decimal("300.00"),
            "unknown": Decimal("50.00"),
        }

    async def test_no_paid_sales(self, ctx):
        db = AsyncMock()
        db.execute.return_value.all = MagicMock(return_value=[])

        metrics = await sale_service.get_sales_metrics(db, ctx.tenant_id)

        assert metrics.sale_count == 0
        assert metrics.average_sale == Decimal("0")
        assert metrics.revenue_by_payment_method == {}
