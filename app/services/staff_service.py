"""Service métier du personnel : rôles et invitations.

Une invitation est adressée à un email et porte le rôle attribué. Elle
expire après ``INVITATION_TTL_DAYS`` jours ; l'utilisateur Keycloak dont
l'email correspond l'accepte et obtient un profil dans le tenant.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.events import publish, subject_for
from app.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvitationError,
    NotFoundError,
)
from app.core.plans import plan_satisfies
from app.core.security import StaffContext, User
from app.models.staff import Profile, StaffInvitation
from app.schemas.staff import InvitationCreate, InvitationResponse, ProfileResponse
from app.services.usage_service import enforce_usage_limit, get_tenant, invalidate_usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

USER_LIMIT_MESSAGE = (
    "User limit reached ({current}/{limit}). Please upgrade your plan to invite more staff."
)


def _require_admin(ctx: StaffContext) -> None:
    if ctx.role != "admin":
        raise ForbiddenError(detail="Only administrators can manage staff")


def _is_expired(expires_at: datetime, now: datetime) -> bool:
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at <= now


async def list_staff(db: AsyncSession, tenant_id: uuid.UUID) -> list[ProfileResponse]:
    result = await db.execute(
        select(Profile).where(Profile.tenant_id == tenant_id).order_by(Profile.full_name)
    )
    return [ProfileResponse.model_validate(p) for p in result.scalars().all()]


async def update_staff_role(
    db: AsyncSession, ctx: StaffContext, profile_id: uuid.UUID, role: str
) -> ProfileResponse:
    """
    Change le rôle d'un membre du personnel.

    Raises:
        ForbiddenError: Appelant non admin
        BadRequestError: Un admin ne peut pas modifier son propre rôle
        NotFoundError: Profil absent du tenant
    """
    with tracer.start_as_current_span("update_staff_role") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))
        span.set_attribute("staff.profile_id", str(profile_id))
        _require_admin(ctx)

        if profile_id == ctx.profile_id and role != ctx.role:
            raise BadRequestError(detail="Administrators cannot change their own role")

        result = await db.execute(
            select(Profile).where(Profile.id == profile_id, Profile.tenant_id == ctx.tenant_id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError(resource_type="Profile", resource_id=profile_id)

        previous_role = profile.role
        profile.role = role
        await db.commit()
        await db.refresh(profile)

        logger.info(f"Rôle de {profile_id} changé: {previous_role} -> {role} par {ctx.profile_id}")
        return ProfileResponse.model_validate(profile)


async def send_invitation(
    db: AsyncSession,
    ctx: StaffContext,
    data: InvitationCreate,
) -> InvitationResponse:
    """
    Invite un membre du personnel.

    Pattern:
    1. Appelant admin
    2. Limite d'utilisateurs (plans payants exemptés)
    3. Pas de membre existant ni d'invitation en attente pour cet email
    4. Création avec expiration à 7 jours, publication de l'événement

    Raises:
        UsageLimitExceededError: Limite d'utilisateurs du plan atteinte
        ConflictError: Email déjà membre ou déjà invité
    """
    with tracer.start_as_current_span("send_invitation") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))
        _require_admin(ctx)

        tenant = await get_tenant(db, ctx.tenant_id)
        if not plan_satisfies(tenant.plan_type, "pro"):
            await enforce_usage_limit(db, ctx.tenant_id, "max_users", USER_LIMIT_MESSAGE)

        email = data.email.lower()
        member = await db.execute(
            select(Profile.id).where(
                Profile.tenant_id == ctx.tenant_id, func.lower(Profile.email) == email
            )
        )
        if member.scalar_one_or_none() is not None:
            raise ConflictError(detail="This email already belongs to a staff member")

        now = datetime.now(UTC)
        pending = await db.execute(
            select(StaffInvitation.id).where(
                StaffInvitation.tenant_id == ctx.tenant_id,
                func.lower(StaffInvitation.email) == email,
                StaffInvitation.status == "pending",
                StaffInvitation.expires_at > now,
            )
        )
        if pending.scalar_one_or_none() is not None:
            raise ConflictError(detail="A pending invitation already exists for this email")

        invitation = StaffInvitation(
            tenant_id=ctx.tenant_id,
            email=email,
            role=data.role,
            status="pending",
            expires_at=now + timedelta(days=settings.INVITATION_TTL_DAYS),
            invited_by=ctx.profile_id,
            metadata_=data.metadata,
        )
        db.add(invitation)
        await db.commit()
        await db.refresh(invitation)

        span.set_attribute("invitation.id", str(invitation.id))
        await publish(
            subject_for("staff", "invited"),
            {
                "tenant_id": str(ctx.tenant_id),
                "invitation_id": str(invitation.id),
                "email": invitation.email,
                "role": invitation.role,
                "expires_at": invitation.expires_at.isoformat(),
            },
        )
        return InvitationResponse.model_validate(invitation)


async def accept_invitation(
    db: AsyncSession, invitation_id: uuid.UUID, user: User
) -> ProfileResponse:
    """
    Accepte une invitation au nom de l'utilisateur authentifié.

    Raises:
        NotFoundError: Invitation inconnue
        InvitationError: Invitation expirée, révoquée ou déjà acceptée
        ForbiddenError: Invitation adressée à un autre email
        ConflictError: L'utilisateur a déjà un profil
    """
    with tracer.start_as_current_span("accept_invitation") as span:
        span.set_attribute("invitation.id", str(invitation_id))
        span.set_attribute("auth.user_id", user.sub)

        invitation = await db.get(StaffInvitation, invitation_id)
        if invitation is None:
            raise NotFoundError(resource_type="Invitation", resource_id=invitation_id)

        if invitation.status != "pending":
            raise InvitationError(detail=f"Invitation is {invitation.status}")

        if _is_expired(invitation.expires_at, datetime.now(UTC)):
            invitation.status = "expired"
            await db.commit()
            raise InvitationError(detail="Invitation has expired")

        if not user.email or user.email.lower() != invitation.email.lower():
            raise ForbiddenError(detail="This invitation was sent to a different email address")

        existing = await db.execute(select(Profile.id).where(Profile.keycloak_user_id == user.sub))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(detail="This user already belongs to a tenant")

        full_name = (invitation.metadata_ or {}).get("full_name") or user.display_name
        profile = Profile(
            tenant_id=invitation.tenant_id,
            keycloak_user_id=user.sub,
            email=invitation.email,
            full_name=full_name,
            role=invitation.role,
        )
        db.add(profile)
        invitation.status = "accepted"
        await db.commit()
        await db.refresh(profile)

        await invalidate_usage(invitation.tenant_id)
        logger.info(f"Invitation {invitation_id} acceptée par {user.sub}")
        return ProfileResponse.model_validate(profile)


async def list_invitations(
    db: AsyncSession, tenant_id: uuid.UUID, status: str | None = None
) -> list[InvitationResponse]:
    filters = [StaffInvitation.tenant_id == tenant_id]
    if status:
        filters.append(StaffInvitation.status == status)
    result = await db.execute(
        select(StaffInvitation).where(*filters).order_by(StaffInvitation.created_at.desc())
    )
    return [InvitationResponse.model_validate(inv) for inv in result.scalars().all()]


async def revoke_invitation(
    db: AsyncSession, ctx: StaffContext, invitation_id: uuid.UUID
) -> InvitationResponse:
    """Révoque une invitation en attente du tenant."""
    _require_admin(ctx)
    result = await db.execute(
        select(StaffInvitation).where(
            StaffInvitation.id == invitation_id, StaffInvitation.tenant_id == ctx.tenant_id
        )
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFoundError(resource_type="Invitation", resource_id=invitation_id)
    if invitation.status != "pending":
        raise ConflictError(detail=f"Invitation is already {invitation.status}")

    invitation.status = "revoked"
    await db.commit()
    await db.refresh(invitation)
    return InvitationResponse.model_validate(invitation)
