"""Schémas Pydantic pour les abonnements, les limites d'usage et le webhook Stripe."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UsageCheck(BaseModel):
    """Résultat de la vérification d'une limite (``limit == -1`` = illimité)."""

    allowed: bool
    current: int
    limit: int
    plan_type: str


class UsageItem(BaseModel):
    limit_type: str
    current: int
    limit: int
    is_within_limit: bool
    message: str


class UsageSnapshot(BaseModel):
    tenant_id: uuid.UUID
    plan_type: str
    usage: dict[str, UsageItem]
    generated_at: datetime


class FeatureResponse(BaseModel):
    id: str
    name: str
    description: str
    required_plan: str
    category: str


class SubscriptionStatus(BaseModel):
    """État de l'abonnement d'un tenant avec ses limites et son usage courant."""

    tenant_id: uuid.UUID
    plan_type: str
    status: str | None
    payment_method: str | None
    subscription_start_date: datetime | None
    subscription_end_date: datetime | None
    limits: dict[str, int]
    features: list[FeatureResponse]
    usage: UsageSnapshot


class StripeEvent(BaseModel):
    """Enveloppe d'un événement Stripe (seuls les champs utilisés sont typés)."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def object(self) -> dict[str, Any]:
        return self.data.get("object") or {}


class WebhookReceived(BaseModel):
    received: bool = True
    event_type: str


class WebhookVerificationResponse(BaseModel):
    """Résultat de la vérification de signature d'un webhook."""

    verified: bool
    reason: str | None = None
