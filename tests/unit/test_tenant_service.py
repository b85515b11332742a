"""Tests unitaires de la création et de la mise à jour des tenants."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.exceptions import ConflictError
from app.core.security import User
from app.models.staff import Profile
from app.models.tenant import Tenant
from app.schemas.tenant import TenantCreate
from app.services import tenant_service

OWNER = User(sub="kc-owner", email="amina@mombasaclinic.co.ke", name="Amina Hassan")


def tenant_db(existing_profile_id=None):
    """Session mockée : ``flush`` attribue l'id, ``refresh`` les horodatages."""
    db = AsyncMock()
    added = []
    db.add = MagicMock(side_effect=added.append)
    lookup = MagicMock()
    lookup.scalar_one_or_none.return_value = existing_profile_id
    db.execute.return_value = lookup

    async def flush():
        for obj in added:
            if isinstance(obj, Tenant) and obj.id is None:
                obj.id = uuid.uuid4()

    async def refresh(obj):
        obj.created_at = obj.updated_at = datetime.now(UTC)

    db.flush.side_effect = flush
    db.refresh.side_effect = refresh
    db.added = added
    return db


@pytest.fixture
def ensure_limits():
    with patch.object(tenant_service, "ensure_subscription_limits", AsyncMock()) as ensure:
        yield ensure


class TestCreateTenant:
    async def test_creates_free_tenant_with_admin(self, ensure_limits):
        db = tenant_db()
        data = TenantCreate(
            name="Mombasa Road Clinic",
            contact_phone="0712 345 678",
            owner_full_name="Amina Hassan",
            owner_phone_number="0722-000-111",
        )

        response = await tenant_service.create_tenant(db, data, OWNER)

        tenant, profile = db.added
        assert response.id == tenant.id
        assert response.plan_type == "free"
        assert response.contact_person == "Amina Hassan"
        assert response.contact_phone == "+254712345678"
        assert response.billing_email == "amina@mombasaclinic.co.ke"
        ensure_limits.assert_awaited_once_with(db, tenant)
        assert isinstance(profile, Profile)
        assert profile.role == "admin"
        assert profile.tenant_id == tenant.id
        assert profile.keycloak_user_id == "kc-owner"
        assert profile.phone_number == "+254722000111"
        db.commit.assert_awaited_once()

    async def test_user_already_in_tenant(self, ensure_limits):
        db = tenant_db(existing_profile_id=uuid.uuid4())

        with pytest.raises(ConflictError) as exc_info:
            await tenant_service.create_tenant(
                db, TenantCreate(name="Second Clinic", owner_full_name="Amina Hassan"), OWNER
            )

        assert "already belongs to a tenant" in exc_info.value.to_dict()["detail"]
        db.add.assert_not_called()
        ensure_limits.assert_not_called()
        db.commit.assert_not_called()
