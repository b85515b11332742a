"""Modèle Patient (patients invités et patient "vente rapide").

Les patients sont enregistrés sans compte utilisateur, au comptoir ou à
l'accueil. Le numéro de téléphone, normalisé au format international, est
unique au sein d'un tenant et sert à retrouver un patient existant.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

PATIENT_TYPES = ("guest", "quick_sale")


class Patient(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "guest_patients"
    __table_args__ = (
        UniqueConstraint("tenant_id", "phone_number", name="uq_guest_patients_tenant_phone"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Téléphone au format international E.164"
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    patient_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="guest", index=True, comment="guest | quick_sale"
    )
    last_access: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, name='{self.full_name}', type='{self.patient_type}')>"
