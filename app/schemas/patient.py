"""Schémas Pydantic pour Patient.

Les patients sont des "patients invités" : enregistrés par le personnel,
sans compte utilisateur. Le téléphone est normalisé par le service au
format international avant enregistrement.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from app.schemas.utils import Email, NonEmptyStr, RawPhoneNumber


def _validate_date_of_birth(v: date | None) -> date | None:
    if v is None:
        return v
    if v > date.today():
        raise ValueError("La date de naissance ne peut pas être dans le futur")
    if v.year < 1900:
        raise ValueError("La date de naissance doit être après 1900")
    return v


class GuestPatientCreate(BaseModel):
    """Enregistrement d'un patient invité (accueil ou comptoir)."""

    full_name: NonEmptyStr = Field(..., max_length=200, examples=["Wanjiku Kamau"])
    phone_number: RawPhoneNumber
    email: Email | None = None
    date_of_birth: date | None = None
    gender: Literal["male", "female", "other"] | None = None
    address: str | None = Field(None, max_length=2000)
    notes: str | None = Field(None, max_length=5000, description="Notes administratives")

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: date | None) -> date | None:
        """Valide que la date de naissance est cohérente."""
        return _validate_date_of_birth(v)


class PatientUpdate(BaseModel):
    """Mise à jour partielle d'un patient."""

    full_name: NonEmptyStr | None = Field(None, max_length=200)
    phone_number: RawPhoneNumber | None = None
    email: Email | None = None
    date_of_birth: date | None = None
    gender: Literal["male", "female", "other"] | None = None
    address: str | None = Field(None, max_length=2000)
    notes: str | None = Field(None, max_length=5000)

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: date | None) -> date | None:
        return _validate_date_of_birth(v)


class PatientResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    full_name: str
    phone_number: str
    email: str | None
    date_of_birth: date | None
    gender: str | None
    address: str | None
    notes: str | None
    patient_type: str
    last_access: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class GuestPatientResult(BaseModel):
    """Résultat d'un enregistrement : patient existant retrouvé ou nouveau patient."""

    patient: PatientResponse
    created: bool = Field(..., description="False si un patient avec ce téléphone existait déjà")
    message: str


class PatientListResponse(BaseModel):
    """Réponse paginée pour liste de patients."""

    items: list[PatientResponse] = Field(..., description="Liste des patients")
    total: int = Field(..., ge=0, description="Nombre total de résultats")
    skip: int = Field(..., ge=0, description="Nombre d'éléments sautés")
    limit: int = Field(..., ge=1, description="Limite par page")


class PatientPurchase(BaseModel):
    sale_id: uuid.UUID
    total_amount: Decimal
    payment_status: str
    created_at: datetime


class PatientSummary(BaseModel):
    """Vue synthétique d'un patient : rendez-vous et achats."""

    patient: PatientResponse
    appointment_count: int
    purchases: list[PatientPurchase]
    total_spent: Decimal = Field(..., description="Somme des achats payés")
    last_visit: datetime | None = Field(None, description="Dernier rendez-vous ou achat")
