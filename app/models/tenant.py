"""Modèles Tenant et limites d'abonnement.

Un tenant est un cabinet médical ou une pharmacie cliente. Son plan
(free, pro, enterprise) détermine les limites d'usage ; la ligne
subscription_limits permet de surcharger les limites par défaut du plan
(ex: limites écrites par le webhook de paiement).
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Tenant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Nom du cabinet")
    plan_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free", comment="free | pro | enterprise"
    )

    # Abonnement
    subscription_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True, comment="ID d'abonnement chez le fournisseur"
    )
    subscription_status: Mapped[str | None] = mapped_column(
        String(30), nullable=True, comment="active | cancelled | past_due | ..."
    )
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True, comment="ID client chez le fournisseur"
    )
    subscription_start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Contact et facturation
    contact_person: Mapped[str | None] = mapped_column(String(200), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    billing_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    max_users: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Plafond de personnel négocié (prioritaire si renseigné)"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}', plan='{self.plan_type}')>"


class SubscriptionLimit(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Limites effectives d'un tenant (-1 = illimité)."""

    __tablename__ = "subscription_limits"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    max_patients: Mapped[int] = mapped_column(Integer, nullable=False)
    max_appointments_per_month: Mapped[int] = mapped_column(Integer, nullable=False)
    max_inventory_items: Mapped[int] = mapped_column(Integer, nullable=False)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False)
    max_transactions_per_month: Mapped[int] = mapped_column(Integer, nullable=False)
    features: Mapped[dict | list] = mapped_column(JSON, nullable=False, default=dict)
