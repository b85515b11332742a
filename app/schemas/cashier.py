"""Schémas Pydantic pour la caisse : paiements en attente, encaissements et reçus."""

import uuid
from datetime import date as date_type
from datetime import datetime
from datetime import time as time_type
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from app.schemas.utils import Money

PayableItemType = Literal["appointment", "sale"]


class PendingAppointment(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    patient_name: str | None = None
    service_name: str | None = None
    date: date_type
    time: time_type
    amount_due: Decimal


class PendingSale(BaseModel):
    id: uuid.UUID
    patient_id: uuid.UUID | None
    patient_name: str | None = None
    total_amount: Decimal
    created_at: datetime


class PendingPaymentsResponse(BaseModel):
    appointments: list[PendingAppointment]
    sales: list[PendingSale]
    appointment_count: int
    sale_count: int
    total_due: Decimal


class CashPaymentRequest(BaseModel):
    item_type: PayableItemType
    item_id: uuid.UUID
    amount: Money | None = Field(
        None, description="Montant encaissé (défaut: montant dû de l'élément)"
    )


class CashPaymentResponse(BaseModel):
    item_type: PayableItemType
    item_id: uuid.UUID
    amount: Decimal
    payment_method: str
    payment_status: str
    paid_at: datetime


class PaymentHistoryItem(BaseModel):
    item_type: PayableItemType
    item_id: uuid.UUID
    patient_id: uuid.UUID | None
    amount: Decimal
    payment_method: str | None
    paid_at: datetime


class PaymentHistoryResponse(BaseModel):
    items: list[PaymentHistoryItem]
    total: int
    skip: int
    limit: int


class ReceiptRequest(BaseModel):
    sale_id: uuid.UUID | None = None
    appointment_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def check_reference(self) -> "ReceiptRequest":
        if self.sale_id is None and self.appointment_id is None:
            raise ValueError("sale_id ou appointment_id est requis")
        return self


class ReceiptMedicationLine(BaseModel):
    name: str
    quantity: int
    unit_price: Decimal
    total: Decimal


class ReceiptData(BaseModel):
    """Contenu d'un reçu, prêt à être formaté en texte."""

    receipt_number: str
    issued_at: datetime
    patient_name: str | None = None
    medications: list[ReceiptMedicationLine] = Field(default_factory=list)
    medication_total: Decimal = Decimal("0")
    service_name: str | None = None
    appointment_total: Decimal = Decimal("0")
    payment_method: str

    @property
    def grand_total(self) -> Decimal:
        return self.medication_total + self.appointment_total


class ReceiptResponse(BaseModel):
    id: uuid.UUID
    receipt_number: str
    sale_id: uuid.UUID | None
    appointment_id: uuid.UUID | None
    amount: Decimal
    medication_total: Decimal
    appointment_total: Decimal
    payment_method: str
    created_at: datetime
    text: str = Field(..., description="Reçu formaté pour impression")
