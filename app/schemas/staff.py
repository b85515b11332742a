"""Schémas Pydantic pour le personnel et les invitations."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.schemas.utils import Email, StaffRole


class ProfileResponse(BaseModel):
    """Membre du personnel d'un tenant."""

    id: uuid.UUID
    tenant_id: uuid.UUID
    keycloak_user_id: str
    email: str
    full_name: str
    phone_number: str | None
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


class StaffRoleUpdate(BaseModel):
    role: StaffRole = Field(..., description="Nouveau rôle")


class InvitationCreate(BaseModel):
    """Invitation d'un membre du personnel par un administrateur."""

    email: Email
    role: StaffRole = Field(..., description="Rôle attribué à l'acceptation")
    metadata: dict[str, Any] | None = Field(
        None, description="Données libres (ex: nom affiché dans l'email d'invitation)"
    )


class InvitationResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    role: str
    status: Literal["pending", "accepted", "expired", "revoked"]
    expires_at: datetime
    invited_by: uuid.UUID | None
    metadata: dict[str, Any] | None = Field(None, validation_alias="metadata_")
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}
