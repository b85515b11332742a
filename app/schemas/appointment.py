"""Schémas Pydantic pour les prestations et les rendez-vous."""

import uuid
from datetime import date as date_type
from datetime import datetime
from datetime import time as time_type
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.patient import GuestPatientCreate
from app.schemas.utils import Money, NonEmptyStr, PositiveInt

AppointmentStatus = Literal["pending", "confirmed", "cancelled", "completed"]


class ServiceCreate(BaseModel):
    """Prestation clinique proposée par le tenant."""

    name: NonEmptyStr = Field(..., max_length=200, examples=["General Consultation"])
    category: NonEmptyStr = Field(..., max_length=100, examples=["consultation"])
    description: str | None = Field(None, max_length=2000)
    duration: PositiveInt = Field(30, description="Durée en minutes")
    price: Money


class ServiceUpdate(BaseModel):
    name: NonEmptyStr | None = Field(None, max_length=200)
    category: NonEmptyStr | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=2000)
    duration: PositiveInt | None = None
    price: Money | None = None
    is_active: bool | None = None


class ServiceResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    category: str
    description: str | None
    duration: int
    price: Decimal
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class AppointmentCreate(BaseModel):
    """
    Réservation d'un rendez-vous.

    Le patient est désigné soit par ``patient_id``, soit par ``guest``
    (patient invité créé ou retrouvé à la volée). La prestation est soit
    ``service_id``, soit ``custom_service``.
    """

    patient_id: uuid.UUID | None = None
    guest: GuestPatientCreate | None = Field(None, description="Patient invité à enregistrer")
    doctor_id: uuid.UUID | None = Field(None, description="Profil du médecin")
    date: date_type | None = None
    time: time_type | None = None
    service_id: uuid.UUID | None = None
    custom_service: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=5000)


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    patient_id: uuid.UUID
    doctor_id: uuid.UUID
    service_id: uuid.UUID | None
    custom_service: str | None
    date: date_type
    time: time_type
    duration: int
    notes: str | None
    status: str
    payment_status: str
    payment_method: str | None
    amount_paid: Decimal | None
    payment_date: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
