"""Schémas Pydantic pour les rapports et le tableau de bord."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.inventory import StockMovementResponse

RevenuePeriod = Literal["daily", "weekly", "monthly"]


class MedicationProfit(BaseModel):
    """Rentabilité d'un médicament sur l'ensemble de ses ventes."""

    medication_id: uuid.UUID
    name: str
    quantity_sold: int
    total_sales: Decimal
    total_cost: Decimal
    profit: Decimal
    profit_margin: float = Field(..., description="Marge en % du coût (0 si coût nul)")
    current_stock: int
    reorder_suggested: bool


class TopSellingMedication(BaseModel):
    medication_id: uuid.UUID
    name: str
    quantity_sold: int
    revenue: Decimal


class RevenueResponse(BaseModel):
    period: RevenuePeriod | None
    since: datetime | None = Field(None, description="Début de la période (None = tout)")
    revenue: Decimal
    sale_count: int


class StockMovementReport(BaseModel):
    medication_id: uuid.UUID | None
    start: datetime | None
    end: datetime | None
    movements: list[StockMovementResponse]
    total_in: int
    total_out: int


class DashboardResponse(BaseModel):
    """Indicateurs du jour pour la page d'accueil du cabinet."""

    total_patients: int
    appointments_today: int
    pending_appointment_payments: int
    pending_sale_payments: int
    low_stock_count: int
    revenue_today: Decimal
    revenue_month: Decimal
    generated_at: datetime
