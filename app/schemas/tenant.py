"""Schémas Pydantic pour les tenants (cabinets et pharmacies)."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.utils import Email, NonEmptyStr, RawPhoneNumber


class TenantCreate(BaseModel):
    """Création d'un tenant par son futur administrateur."""

    name: NonEmptyStr = Field(..., max_length=255, description="Nom du cabinet ou de la pharmacie")
    contact_person: str | None = Field(None, max_length=200, description="Personne de contact")
    contact_phone: RawPhoneNumber | None = None
    billing_email: Email | None = None
    billing_address: str | None = Field(None, max_length=2000)
    owner_full_name: NonEmptyStr = Field(
        ..., max_length=200, description="Nom complet de l'administrateur"
    )
    owner_phone_number: RawPhoneNumber | None = None


class TenantUpdate(BaseModel):
    """Mise à jour partielle des informations du tenant."""

    name: NonEmptyStr | None = Field(None, max_length=255)
    contact_person: str | None = Field(None, max_length=200)
    contact_phone: RawPhoneNumber | None = None
    billing_email: Email | None = None
    billing_address: str | None = Field(None, max_length=2000)


class TenantResponse(BaseModel):
    id: uuid.UUID
    name: str
    plan_type: str
    subscription_status: str | None
    subscription_start_date: datetime | None
    subscription_end_date: datetime | None
    payment_method: str | None
    contact_person: str | None
    contact_phone: str | None
    billing_email: str | None
    billing_address: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
