"""Tests unitaires du personnel : rôles et invitations."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvitationError,
    UsageLimitExceededError,
)
from app.core.security import StaffContext, User
from app.models.staff import Profile, StaffInvitation
from app.models.tenant import Tenant
from app.schemas.staff import InvitationCreate
from app.services import staff_service


def admin_context(role: str = "admin") -> StaffContext:
    return StaffContext(
        user_id="kc-admin",
        profile_id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        role=role,
        email="admin@clinic.co.ke",
        full_name="Amina Hassan",
    )


def scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def make_invitation(tenant_id, status="pending", expires_in=timedelta(days=3)):
    return StaffInvitation(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        email="pharma@clinic.co.ke",
        role="pharmacist",
        status=status,
        expires_at=datetime.now(UTC) + expires_in,
        metadata_={"full_name": "Grace Wambui"},
    )


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


class TestRoles:
    async def test_non_admin_forbidden(self, mock_db):
        with pytest.raises(ForbiddenError):
            await staff_service.update_staff_role(
                mock_db, admin_context("doctor"), uuid.uuid4(), "admin"
            )

    async def test_admin_cannot_demote_self(self, mock_db):
        ctx = admin_context()

        with pytest.raises(BadRequestError):
            await staff_service.update_staff_role(mock_db, ctx, ctx.profile_id, "cashier")

        mock_db.execute.assert_not_called()


class TestSendInvitation:
    @pytest.fixture(autouse=True)
    def side_effects(self):
        with (
            patch.object(staff_service, "enforce_usage_limit", AsyncMock()) as enforce,
            patch.object(staff_service, "publish", AsyncMock()) as publish,
        ):
            yield {"enforce": enforce, "publish": publish}

    async def test_free_plan_user_limit(self, mock_db, side_effects):
        ctx = admin_context()
        side_effects["enforce"].side_effect = UsageLimitExceededError(
            limit_type="max_users", current=1, limit=1
        )
        tenant = Tenant(id=ctx.tenant_id, name="Clinic", plan_type="free")

        with patch.object(staff_service, "get_tenant", AsyncMock(return_value=tenant)):
            with pytest.raises(UsageLimitExceededError):
                await staff_service.send_invitation(
                    mock_db, ctx, InvitationCreate(email="pharma@clinic.co.ke", role="pharmacist")
                )

        mock_db.add.assert_not_called()

    async def test_paid_plan_skips_limit_and_rejects_duplicate(self, mock_db, side_effects):
        ctx = admin_context()
        tenant = Tenant(id=ctx.tenant_id, name="Clinic", plan_type="pro")
        mock_db.execute.side_effect = [scalar_result(None), scalar_result(uuid.uuid4())]

        with patch.object(staff_service, "get_tenant", AsyncMock(return_value=tenant)):
            with pytest.raises(ConflictError) as exc_info:
                await staff_service.send_invitation(
                    mock_db, ctx, InvitationCreate(email="Pharma@Clinic.co.ke", role="pharmacist")
                )

            assert "pending invitation" in exc_info.value.to_dict()["detail"]

        side_effects["enforce"].assert_not_called()

    async def test_existing_member_rejected(self, mock_db):
        ctx = admin_context()
        tenant = Tenant(id=ctx.tenant_id, name="Clinic", plan_type="enterprise")
        mock_db.execute.return_value = scalar_result(uuid.uuid4())

        with patch.object(staff_service, "get_tenant", AsyncMock(return_value=tenant)):
            with pytest.raises(ConflictError) as exc_info:
                await staff_service.send_invitation(
                    mock_db, ctx, InvitationCreate(email="doc@clinic.co.ke", role="doctor")
                )

            assert "already belongs" in exc_info.value.to_dict()["detail"]


class TestAcceptInvitation:
    @pytest.fixture(autouse=True)
    def no_usage_cache(self):
        with patch.object(staff_service, "invalidate_usage", AsyncMock()) as invalidate:
            yield invalidate

    async def test_expired_invitation_marked(self, mock_db):
        invitation = make_invitation(uuid.uuid4(), expires_in=timedelta(days=-1))
        mock_db.get.return_value = invitation

        with pytest.raises(InvitationError) as exc_info:
            await staff_service.accept_invitation(
                mock_db, invitation.id, User(sub="kc-2", email="pharma@clinic.co.ke")
            )

        assert "expired" in exc_info.value.to_dict()["detail"]

        assert invitation.status == "expired"
        mock_db.commit.assert_awaited_once()

    async def test_revoked_invitation(self, mock_db):
        invitation = make_invitation(uuid.uuid4(), status="revoked")
        mock_db.get.return_value = invitation

        with pytest.raises(InvitationError):
            await staff_service.accept_invitation(
                mock_db, invitation.id, User(sub="kc-2", email="pharma@clinic.co.ke")
            )

    async def test_wrong_email(self, mock_db):
        invitation = make_invitation(uuid.uuid4())
        mock_db.get.return_value = invitation

        with pytest.raises(ForbiddenError):
            await staff_service.accept_invitation(
                mock_db, invitation.id, User(sub="kc-2", email="someone@else.com")
            )

    async def test_accept_creates_profile(self, mock_db, no_usage_cache):
        invitation = make_invitation(uuid.uuid4())
        mock_db.get.return_value = invitation
        mock_db.execute.return_value = scalar_result(None)

        async def refresh(profile):
            profile.id = uuid.uuid4()
            profile.created_at = datetime.now(UTC)

        mock_db.refresh.side_effect = refresh

        profile = await staff_service.accept_invitation(
            mock_db, invitation.id, User(sub="kc-2", email="PHARMA@clinic.co.ke")
        )

        assert profile.role == "pharmacist"
        assert profile.full_name == "Grace Wambui"
        assert profile.tenant_id == invitation.tenant_id
        assert invitation.status == "accepted"
        assert isinstance(mock_db.add.call_args[0][0], Profile)
        no_usage_cache.assert_awaited_once_with(invitation.tenant_id)
