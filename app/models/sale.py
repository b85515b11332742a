"""Modèles Sale, SaleItem et Receipt."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin

SALE_PAYMENT_METHODS = ("cash", "mpesa", "card", "insurance")
SALE_PAYMENT_STATUSES = ("paid", "unpaid", "pending", "refunded")


class Sale(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "sales"

    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("guest_patients.id"), nullable=True, index=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="paid", index=True
    )
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    items: Mapped[list["SaleItem"]] = relationship(
        back_populates="sale", lazy="selectin", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Sale(id={self.id}, total={self.total_amount}, status='{self.payment_status}')>"


class SaleItem(UUIDPrimaryKeyMixin, TenantMixin, Base):
    __tablename__ = "sale_items"

    sale_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True
    )
    medication_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("medications.id"), nullable=False, index=True
    )
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("medication_batches.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    sale: Mapped[Sale] = relationship(back_populates="items", lazy="raise")


class Receipt(UUIDPrimaryKeyMixin, TenantMixin, Base):
    __tablename__ = "receipts"

    receipt_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    sale_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("sales.id"), nullable=True, index=True
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id"), nullable=True, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    medication_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    appointment_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
