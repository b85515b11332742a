"""Tests unitaires du service de caisse (reçus, encaissements)."""

import re
import uuid
from datetime import UTC, date, datetime, time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.core.security import StaffContext
from app.models.appointment import Appointment, Service
from app.models.sale import Sale
from app.schemas.cashier import ReceiptData, ReceiptMedicationLine, ReceiptRequest
from app.services import cashier_service
from app.services.cashier_service import (
    appointment_amount_due,
    format_amount,
    format_receipt,
    generate_receipt_number,
    get_payment_history,
    process_cash_payment,
)


@pytest.fixture
def ctx():
    return StaffContext(
        user_id="kc-1",
        profile_id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        role="cashier",
        email="cashier@clinic.co.ke",
        full_name="Achieng Odhiambo",
    )


@pytest.fixture(autouse=True)
def side_effects():
    with (
        patch.object(cashier_service, "invalidate_usage", AsyncMock()) as invalidate,
        patch.object(cashier_service, "publish", AsyncMock()) as publish,
    ):
        yield {"invalidate": invalidate, "publish": publish}


def db_returning(obj):
    db = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = obj
    db.execute.return_value = result
    return db


def make_appointment(ctx, payment_status="unpaid", price="1500.00") -> Appointment:
    service = Service(name="General Consultation", price=Decimal(price)) if price else None
    return Appointment(
        id=uuid.uuid4(),
        tenant_id=ctx.tenant_id,
        patient_id=uuid.uuid4(),
        doctor_id=uuid.uuid4(),
        service=service,
        date=date(2024, 5, 3),
        time=time(9, 30),
        duration=30,
        status="confirmed",
        payment_status=payment_status,
    )


class TestFormatting:
    def test_receipt_number_format(self):
        number = generate_receipt_number(datetime(2024, 5, 3, 10, 0, tzinfo=UTC))

        assert re.fullmatch(r"RCP-20240503-[0-9A-F]{6}", number)

    def test_receipt_numbers_unique(self):
        assert len({generate_receipt_number() for _ in range(50)}) == 50

    def test_format_amount(self):
        assert format_amount(Decimal("1500")) == "KSh 1500.00"

    def test_amount_due_without_service(self, ctx):
        appointment = make_appointment(ctx, price=None)
        appointment.custom_service = "Home visit"

        assert appointment_amount_due(appointment) == Decimal("0")

    def test_full_receipt(self):
        data = ReceiptData(
            receipt_number="RCP-20240503-ABC123",
            issued_at=datetime(2024, 5, 3, 10, 15, tzinfo=UTC),
            patient_name="Wanjiku Kamau",
            medications=[
                ReceiptMedicationLine(
                    name="Amoxicillin 500mg",
                    quantity=2,
                    unit_price=Decimal("150.00"),
                    total=Decimal("300.00"),
                )
            ],
            medication_total=Decimal("300.00"),
            service_name="General Consultation",
            appointment_total=Decimal("1500.00"),
            payment_method="mpesa",
        )

        text = format_receipt(data)
        lines = text.splitlines()

        assert lines[0] == "Receipt #RCP-20240503-ABC123"
        assert lines[1] == "Date: 2024-05-03 10:15"
        assert "Patient: Wanjiku Kamau" in lines
        assert "- Amoxicillin 500mg (2 x KSh 150.00) = KSh 300.00" in lines
        assert "Medication Total: KSh 300.00" in lines
        assert "- General Consultation = KSh 1500.00" in lines
        assert "Grand Total: KSh 1800.00" in lines
        assert "Payment Method: mpesa" in lines
        assert lines[-1] == "-" * 40

    def test_empty_receipt_sections(self):
        data = ReceiptData(
            receipt_number="RCP-20240503-000000",
            issued_at=datetime(2024, 5, 3, tzinfo=UTC),
            payment_method="cash",
        )

        text = format_receipt(data)

        assert "Patient: Unknown Patient" in text
        assert "No medications" in text
        assert "No appointments" in text
        assert "Grand Total: KSh 0.00" in text


class TestReceiptRequest:
    def test_requires_a_reference(self):
        with pytest.raises(ValueError):
            ReceiptRequest()


class TestProcessCashPayment:
    async def test_appointment_paid_with_service_price(self, ctx, side_effects):
        appointment = make_appointment(ctx)
        db = db_returning(appointment)

        response = await process_cash_payment(db, ctx, "appointment", appointment.id)

        assert response.amount == Decimal("1500.00")
        assert appointment.payment_status == "paid"
        assert appointment.payment_method == "cash"
        assert appointment.amount_paid == Decimal("1500.00")
        assert appointment.payment_date is not None
        db.commit.assert_awaited_once()
        side_effects["invalidate"].assert_not_called()
        assert side_effects["publish"].call_args[0][0] == "practice.payment.received"

    async def test_appointment_custom_amount(self, ctx):
        appointment = make_appointment(ctx)

        response = await process_cash_payment(
            db_returning(appointment), ctx, "appointment", appointment.id, Decimal("1000.00")
        )

        assert response.amount == Decimal("1000.00")

    async def test_sale_paid(self, ctx, side_effects):
        sale = Sale(
            id=uuid.uuid4(),
            tenant_id=ctx.tenant_id,
            total_amount=Decimal("450.00"),
            payment_status="unpaid",
            created_by=ctx.profile_id,
        )

        response = await process_cash_payment(db_returning(sale), ctx, "sale", sale.id)

        assert response.amount == Decimal("450.00")
        assert sale.payment_status == "paid"
        side_effects["invalidate"].assert_awaited_once_with(ctx.tenant_id)

    async def test_already_paid_conflict(self, ctx):
        appointment = make_appointment(ctx, payment_status="paid")
        db = db_returning(appointment)

        with pytest.raises(ConflictError):
            await process_cash_payment(db, ctx, "appointment", appointment.id)

        db.commit.assert_not_called()

    async def test_refunded_sale_conflict(self, ctx):
        """Une vente remboursée ne peut pas être réencaissée."""
        sale = Sale(
            id=uuid.uuid4(),
            tenant_id=ctx.tenant_id,
            total_amount=Decimal("450.00"),
            payment_status="refunded",
            created_by=ctx.profile_id,
        )
        db = db_returning(sale)

        with pytest.raises(ConflictError) as exc_info:
            await process_cash_payment(db, ctx, "sale", sale.id)

        assert "refunded" in exc_info.value.to_dict()["detail"]

        assert sale.payment_status == "refunded"
        assert sale.payment_method is None
        db.commit.assert_not_called()

    async def test_cancelled_appointment_conflict(self, ctx):
        appointment = make_appointment(ctx)
        appointment.status = "cancelled"
        db = db_returning(appointment)

        with pytest.raises(ConflictError) as exc_info:
            await process_cash_payment(db, ctx, "appointment", appointment.id)

        assert "cancelled" in exc_info.value.to_dict()["detail"]

        assert appointment.payment_status == "unpaid"
        db.commit.assert_not_called()

    async def test_missing_item(self, ctx):
        with pytest.raises(NotFoundError):
            await process_cash_payment(db_returning(None), ctx, "sale", uuid.uuid4())

    async def test_unknown_type(self, ctx):
        with pytest.raises(BadRequestError):
            await process_cash_payment(AsyncMock(), ctx, "insurance_claim", uuid.uuid4())


class TestGenerateReceipt:
    async def test_requires_reference(self, ctx):
        with pytest.raises(BadRequestError):
            await cashier_service.generate_receipt(AsyncMock(), ctx)

    async def test_appointment_receipt(self, ctx):
        appointment = make_appointment(ctx, payment_status="paid")
        appointment.amount_paid = Decimal("1200.00")
        appointment.payment_method = "card"
        db = db_returning(appointment)
        db.add = MagicMock()
        db.scalar.return_value = "Wanjiku Kamau"

        async def refresh(receipt):
            receipt.id = uuid.uuid4()
            receipt.created_at = datetime.now(UTC)

        db.refresh.side_effect = refresh

        response = await cashier_service.generate_receipt(db, ctx, appointment_id=appointment.id)

        assert response.amount == Decimal("1200.00")
        assert response.appointment_total == Decimal("1200.00")
        assert response.medication_total == Decimal("0")
        assert response.payment_method == "card"
        assert "Patient: Wanjiku Kamau" in response.text
        assert "- General Consultation = KSh 1200.00" in response.text
        assert db.add.call_args[0][0].receipt_number == response.receipt_number


class TestPaymentHistory:
    async def test_paginated_in_database(self, ctx):
        """Le tri et la pagination sont délégués à la requête UNION ALL."""
        paid_at = datetime(2024, 5, 3, 10, 0, tzinfo=UTC)
        row = MagicMock()
        row._mapping = {
            "item_type": "appointment",
            "item_id": uuid.uuid4(),
            "patient_id": uuid.uuid4(),
            "amount": Decimal("1500.00"),
            "payment_method": "cash",
            "paid_at": paid_at,
        }
        count_result = MagicMock()
        count_result.scalar_one.return_value = 7
        rows_result = MagicMock()
        rows_result.all.return_value = [row]
        db = AsyncMock()
        db.execute.side_effect = [count_result, rows_result]

        history = await get_payment_history(db, ctx.tenant_id, skip=5, limit=1)

        assert history.total == 7
        assert history.skip == 5
        assert [item.item_type for item in history.items] == ["appointment"]
        assert history.items[0].paid_at == paid_at

        page_query = str(
            db.execute.call_args_list[1].args[0].compile(dialect=postgresql.dialect())
        )
        assert "UNION ALL" in page_query
        assert "ORDER BY payment_history.paid_at DESC" in page_query
        assert "LIMIT" in page_query
        assert "OFFSET" in page_query
