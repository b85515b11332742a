"""
Tests d'intégration PostgreSQL de l'historique des paiements.

Ces tests utilisent un vrai PostgreSQL sur le port 5433 (docker-compose.test.yaml).
"""

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.sale import Sale
from app.services.cashier_service import get_payment_history


def paid_sale(tenant_id: uuid.UUID, amount: str, created_at: datetime, status="paid") -> Sale:
    return Sale(
        tenant_id=tenant_id,
        total_amount=Decimal(amount),
        payment_method="cash",
        payment_status=status,
        created_by=uuid.uuid4(),
        created_at=created_at,
    )


@pytest.mark.integration
async def test_history_paginated_newest_first(db_session: AsyncSession, tenant_id):
    """La page demandée suit l'ordre décroissant; le total compte toutes les lignes."""
    now = datetime.now(UTC)
    db_session.add_all(
        [
            paid_sale(tenant_id, "100.00", now - timedelta(days=3)),
            paid_sale(tenant_id, "200.00", now - timedelta(days=2)),
            paid_sale(tenant_id, "300.00", now - timedelta(days=1)),
            paid_sale(tenant_id, "999.00", now, status="unpaid"),
            paid_sale(uuid.uuid4(), "450.00", now),
        ]
    )
    await db_session.commit()

    page = await get_payment_history(db_session, tenant_id, skip=1, limit=1)

    assert page.total == 3
    assert [item.amount for item in page.items] == [Decimal("200.00")]
    assert page.items[0].item_type == "sale"


@pytest.mark.integration
async def test_history_date_window(db_session: AsyncSession, tenant_id):
    now = datetime.now(UTC)
    db_session.add_all(
        [
            paid_sale(tenant_id, "100.00", now - timedelta(days=10)),
            paid_sale(tenant_id, "200.00", now - timedelta(hours=2)),
        ]
    )
    await db_session.commit()

    page = await get_payment_history(db_session, tenant_id, start=now - timedelta(days=1))

    assert page.total == 1
    assert page.items[0].amount == Decimal("200.00")
