"""Modèles du personnel : profils et invitations.

Le profil relie un utilisateur Keycloak à son tenant et à son rôle
(admin, doctor, pharmacist, cashier). Un utilisateur sans profil ne peut
accéder à aucune donnée de tenant.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

STAFF_ROLES = ("admin", "doctor", "pharmacist", "cashier")
INVITATION_STATUSES = ("pending", "accepted", "expired", "revoked")


class Profile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "profiles"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    keycloak_user_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="UUID de l'utilisateur dans Keycloak",
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="admin | doctor | pharmacist | cashier"
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email='{self.email}', role='{self.role}')>"


class StaffInvitation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "staff_invitations"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    invited_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
