"""Schémas Pydantic pour l'inventaire pharmacie.

Médicaments, lots, mouvements de stock, fournisseurs, bons de commande
et alertes de stock.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.utils import Email, Money, NonEmptyStr, Quantity, RawPhoneNumber


class InventoryItemUpsert(BaseModel):
    """
    Création ou mise à jour d'un médicament, avec lot optionnel.

    Sans ``id`` le médicament est créé (soumis à la limite d'inventaire du
    plan). Un lot est ajouté lorsque ``batch_number``, ``expiry_date`` et
    ``quantity`` sont tous renseignés.
    """

    id: uuid.UUID | None = Field(None, description="Médicament à mettre à jour")
    name: str | None = Field(None, max_length=200, examples=["Amoxicillin"])
    category: str | None = Field(None, max_length=100, examples=["antibiotic"])
    description: str | None = Field(None, max_length=2000)
    dosage_form: str | None = Field(None, max_length=50, examples=["capsule"])
    strength: str | None = Field(None, max_length=50, examples=["500mg"])
    unit_price: Money | None = None
    manufacturer: str | None = Field(None, max_length=200)
    barcode: str | None = Field(None, max_length=100)
    shelf_location: str | None = Field(None, max_length=50)

    batch_number: str | None = Field(None, max_length=100)
    expiry_date: date | None = None
    quantity: Quantity | None = None
    batch_unit_price: Money | None = Field(None, description="Prix d'achat unitaire du lot")


class MedicationUpdate(BaseModel):
    name: NonEmptyStr | None = Field(None, max_length=200)
    category: NonEmptyStr | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=2000)
    dosage_form: NonEmptyStr | None = Field(None, max_length=50)
    strength: NonEmptyStr | None = Field(None, max_length=50)
    unit_price: Money | None = None
    manufacturer: str | None = Field(None, max_length=200)
    barcode: str | None = Field(None, max_length=100)
    shelf_location: str | None = Field(None, max_length=50)
    is_active: bool | None = None


class BatchCreate(BaseModel):
    medication_id: uuid.UUID
    batch_number: NonEmptyStr = Field(..., max_length=100)
    expiry_date: date
    quantity: Quantity
    unit_price: Money | None = Field(None, description="Prix d'achat unitaire")


class BatchResponse(BaseModel):
    id: uuid.UUID
    medication_id: uuid.UUID
    batch_number: str
    expiry_date: date
    quantity: int
    unit_price: Decimal | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MedicationResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    category: str
    description: str | None
    dosage_form: str
    strength: str
    unit_price: Decimal
    manufacturer: str | None
    barcode: str | None
    shelf_location: str | None
    is_active: bool
    last_restocked_at: datetime | None
    last_sold_at: datetime | None
    total_stock: int = Field(0, description="Quantité totale des lots non expirés")
    created_at: datetime

    model_config = {"from_attributes": True}


class MedicationDetail(MedicationResponse):
    batches: list[BatchResponse] = Field(default_factory=list)


class InventoryUpsertResult(BaseModel):
    medication: MedicationResponse
    batch: BatchResponse | None = None
    created: bool


class MedicationListResponse(BaseModel):
    items: list[MedicationResponse]
    total: int = Field(..., ge=0)


class RestockRequest(BaseModel):
    medication_id: uuid.UUID
    quantity: Quantity
    reason: str | None = Field(None, max_length=255, examples=["Manual restock"])
    batch_id: uuid.UUID | None = Field(
        None, description="Lot à réapprovisionner (défaut: lot à l'expiration la plus tardive)"
    )


class StockMovementResponse(BaseModel):
    id: uuid.UUID
    medication_id: uuid.UUID
    batch_id: uuid.UUID
    movement_type: Literal["sale", "restock", "adjustment", "purchase_order"]
    quantity: int
    reference_id: uuid.UUID | None
    reason: str | None
    created_by: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RestockResult(BaseModel):
    batch: BatchResponse
    movement: StockMovementResponse


# =============================================================================
# Fournisseurs et bons de commande
# =============================================================================


class SupplierCreate(BaseModel):
    name: NonEmptyStr = Field(..., max_length=200)
    contact_person: str | None = Field(None, max_length=200)
    email: Email | None = None
    phone_number: RawPhoneNumber | None = None
    address: str | None = Field(None, max_length=2000)


class SupplierUpdate(BaseModel):
    name: NonEmptyStr | None = Field(None, max_length=200)
    contact_person: str | None = Field(None, max_length=200)
    email: Email | None = None
    phone_number: RawPhoneNumber | None = None
    address: str | None = Field(None, max_length=2000)


class SupplierResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    contact_person: str | None
    email: str | None
    phone_number: str | None
    address: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PurchaseOrderItemCreate(BaseModel):
    medication_id: uuid.UUID
    quantity: Quantity
    unit_price: Money


class PurchaseOrderCreate(BaseModel):
    supplier_id: uuid.UUID
    items: list[PurchaseOrderItemCreate] = Field(..., min_length=1)


class PurchaseOrderItemResponse(BaseModel):
    id: uuid.UUID
    medication_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class PurchaseOrderResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    supplier_id: uuid.UUID
    status: Literal["pending", "delivered", "cancelled"]
    total_amount: Decimal
    delivery_date: datetime | None
    created_by: uuid.UUID | None
    created_at: datetime
    items: list[PurchaseOrderItemResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


# =============================================================================
# Alertes de stock
# =============================================================================


class LowStockAlert(BaseModel):
    medication_id: uuid.UUID
    name: str
    strength: str
    total_quantity: int


class BatchAlert(BaseModel):
    batch_id: uuid.UUID
    medication_id: uuid.UUID
    medication_name: str
    batch_number: str
    expiry_date: date
    quantity: int
    days_until_expiry: int = Field(..., description="Négatif si le lot est expiré")


class StockAlertsResponse(BaseModel):
    """Alertes : stock bas, lots proches de l'expiration et lots expirés."""

    low_stock: list[LowStockAlert]
    expiring_soon: list[BatchAlert]
    expired: list[BatchAlert]
