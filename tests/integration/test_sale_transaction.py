"""
Tests d'intégration PostgreSQL de la transaction de vente.

Ces tests utilisent un vrai PostgreSQL sur le port 5433 (docker-compose.test.yaml).
"""

import asyncio
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import InsufficientStockError
from app.core.security import StaffContext
from app.models.patient import Patient
from app.models.pharmacy import Medication, MedicationBatch, StockMovement
from app.models.sale import Sale
from app.schemas.sale import SaleCreate, SaleItemCreate
from app.services.sale_service import _persist_sale


def staff_context(tenant_id: uuid.UUID) -> StaffContext:
    return StaffContext(
        user_id="kc-pharmacist",
        profile_id=uuid.uuid4(),
        tenant_id=tenant_id,
        role="pharmacist",
        email="pharma@clinic.co.ke",
        full_name="Kiprop Cheruiyot",
    )


async def stocked_batch(db: AsyncSession, tenant_id: uuid.UUID, quantity: int) -> MedicationBatch:
    medication = Medication(
        tenant_id=tenant_id,
        name="Amoxicillin",
        category="antibiotic",
        dosage_form="capsule",
        strength="500mg",
        unit_price=Decimal("15.00"),
        is_active=True,
    )
    db.add(medication)
    await db.flush()
    batch = MedicationBatch(
        tenant_id=tenant_id,
        medication_id=medication.id,
        batch_number="AMX-2024-01",
        expiry_date=date.today() + timedelta(days=365),
        quantity=quantity,
        unit_price=Decimal("8.00"),
    )
    db.add(batch)
    await db.commit()
    return batch


@pytest.mark.integration
async def test_sale_decrements_batch(db_session: AsyncSession, tenant_id):
    """Une vente décrémente le lot et écrit un mouvement négatif."""
    batch = await stocked_batch(db_session, tenant_id, quantity=20)
    data = SaleCreate(
        items=[
            SaleItemCreate(
                medication_id=batch.medication_id,
                batch_id=batch.id,
                quantity=6,
                unit_price=Decimal("15.00"),
            )
        ],
        payment_method="cash",
    )

    sale = await _persist_sale(db_session, staff_context(tenant_id), None, data)

    await db_session.refresh(batch)
    assert batch.quantity == 14
    assert sale.total_amount == Decimal("90.00")

    movements = (
        await db_session.execute(select(StockMovement).where(StockMovement.reference_id == sale.id))
    ).scalars().all()
    assert [(m.movement_type, m.quantity) for m in movements] == [("sale", -6)]

    medication = await db_session.get(Medication, batch.medication_id)
    assert medication.last_sold_at is not None


@pytest.mark.integration
async def test_insufficient_stock_leaves_no_trace(db_session: AsyncSession, tenant_id):
    """Deux lignes du même lot dépassant le stock : aucune écriture."""
    batch = await stocked_batch(db_session, tenant_id, quantity=5)
    line = SaleItemCreate(
        medication_id=batch.medication_id,
        batch_id=batch.id,
        quantity=3,
        unit_price=Decimal("15.00"),
    )

    with pytest.raises(InsufficientStockError):
        await _persist_sale(
            db_session, staff_context(tenant_id), None, SaleCreate(items=[line, line])
        )

    await db_session.refresh(batch)
    assert batch.quantity == 5
    sales = (await db_session.execute(select(Sale).where(Sale.tenant_id == tenant_id))).all()
    assert sales == []
    movements = (
        await db_session.execute(select(StockMovement).where(StockMovement.batch_id == batch.id))
    ).all()
    assert movements == []


@pytest.mark.integration
async def test_batch_quantity_cannot_go_negative(db_session: AsyncSession, tenant_id):
    batch = await stocked_batch(db_session, tenant_id, quantity=1)
    batch.quantity = -1

    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.integration
async def test_guest_phone_unique_per_tenant(db_session: AsyncSession, tenant_id):
    """Le même numéro peut exister dans deux tenants, pas deux fois dans un tenant."""
    db_session.add_all(
        [
            Patient(tenant_id=tenant_id, full_name="Wanjiku Kamau", phone_number="+254712345678"),
            Patient(
                tenant_id=uuid.uuid4(), full_name="Wanjiku Kamau", phone_number="+254712345678"
            ),
        ]
    )
    await db_session.commit()

    db_session.add(Patient(tenant_id=tenant_id, full_name="W. Kamau", phone_number="+254712345678"))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.integration
async def test_concurrent_sales_never_oversell(test_engine, db_session: AsyncSession, tenant_id):
    """Deux ventes simultanées sur le même lot : le verrou de ligne en sérialise une."""
    batch = await stocked_batch(db_session, tenant_id, quantity=10)
    data = SaleCreate(
        items=[
            SaleItemCreate(
                medication_id=batch.medication_id,
                batch_id=batch.id,
                quantity=6,
                unit_price=Decimal("15.00"),
            )
        ],
        payment_method="cash",
    )
    session_maker = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def sell():
        async with session_maker() as session:
            return await _persist_sale(session, staff_context(tenant_id), None, data)

    results = await asyncio.gather(sell(), sell(), return_exceptions=True)

    sales = [r for r in results if isinstance(r, Sale)]
    errors = [r for r in results if isinstance(r, InsufficientStockError)]
    assert len(sales) == 1
    assert len(errors) == 1
    assert errors[0].to_dict()["available"] == 4

    await db_session.refresh(batch)
    assert batch.quantity == 4
