"""Modèles Service (prestation clinique) et Appointment (rendez-vous)."""

import uuid
from datetime import date as date_type
from datetime import datetime
from datetime import time as time_type
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin

APPOINTMENT_STATUSES = ("pending", "confirmed", "cancelled", "completed")
PAYMENT_STATUSES = ("unpaid", "paid")


class Service(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "services"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int] = mapped_column(
        Integer, nullable=False, default=30, comment="Durée en minutes"
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Appointment(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "appointments"

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("guest_patients.id"), nullable=False, index=True
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False, index=True
    )
    service_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("services.id"), nullable=True
    )
    custom_service: Mapped[str | None] = mapped_column(String(200), nullable=True)

    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    time: Mapped[time_type] = mapped_column(Time, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Paiement
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unpaid", index=True
    )
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    service: Mapped[Service | None] = relationship(lazy="selectin")
