"""Schémas Pydantic pour les ventes au comptoir."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.schemas.utils import (
    Money,
    PaymentMethod,
    Quantity,
    SalePaymentStatus,
    SanitizedSearchStr,
    Timeframe,
)


class SaleItemCreate(BaseModel):
    medication_id: uuid.UUID
    batch_id: uuid.UUID = Field(..., description="Lot dont le stock est décrémenté")
    quantity: Quantity
    unit_price: Money


class SaleCreate(BaseModel):
    """
    Vente de médicaments.

    Le total de chaque ligne et le total de la vente sont recalculés côté
    serveur. ``quick_sale`` rattache la vente au patient "vente rapide" du
    tenant lorsqu'aucun ``patient_id`` n'est donné.
    """

    patient_id: uuid.UUID | None = None
    quick_sale: bool = False
    items: list[SaleItemCreate] = Field(default_factory=list)
    payment_method: PaymentMethod | None = "cash"
    payment_status: SalePaymentStatus = "paid"
    transaction_id: str | None = Field(None, max_length=100, description="Référence M-Pesa, carte...")


class SaleStatusUpdate(BaseModel):
    payment_status: SalePaymentStatus
    payment_method: PaymentMethod | None = None


class SaleItemResponse(BaseModel):
    id: uuid.UUID
    medication_id: uuid.UUID
    batch_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class SaleResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    patient_id: uuid.UUID | None
    total_amount: Decimal
    payment_method: str | None
    payment_status: str
    transaction_id: str | None
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime
    items: list[SaleItemResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class SaleListItem(SaleResponse):
    patient_name: str | None = None
    patient_phone: str | None = None


class SaleListQuery(BaseModel):
    """Paramètres de la liste des ventes (clé du cache mémoire)."""

    timeframe: Timeframe = "all"
    search: SanitizedSearchStr | None = Field(None, description="Nom ou téléphone du patient")
    payment_status: SalePaymentStatus | None = None
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)


class SaleListResponse(BaseModel):
    items: list[SaleListItem]
    total: int = Field(..., ge=0)
    page: int
    page_size: int


class SalesMetrics(BaseModel):
    timeframe: Timeframe
    total_revenue: Decimal
    sale_count: int
    average_sale: Decimal
    revenue_by_payment_method: dict[str, Decimal]
