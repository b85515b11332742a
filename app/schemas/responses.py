"""
Schémas de réponses OpenAPI pour RFC 9457 Problem Details.

Ce module réexporte les schémas du module fastapi-errors-rfc9457 et ajoute
la réponse 403 des limites d'abonnement.
"""

from typing import Any

from fastapi_errors_rfc9457 import (
    COMMON_RESPONSES,
    ConflictErrorResponse,
    ProblemDetailResponse,
    ValidationErrorResponse,
    admin_responses,
    auth_responses,
    build_responses,
    create_responses,
    delete_responses,
    list_responses,
    read_responses,
    update_responses,
)
from pydantic import Field


class UsageLimitErrorResponse(ProblemDetailResponse):
    limit_type: str = Field(..., description="Limite atteinte (ex: max_patients)")
    current: int = Field(..., description="Usage courant")
    limit: int = Field(..., description="Limite du plan")


def limited_create_responses() -> dict[int | str, dict[str, Any]]:
    """Réponses d'une création soumise aux limites du plan."""
    return {
        **create_responses(),
        403: {
            "model": UsageLimitErrorResponse,
            "description": "Limite d'abonnement atteinte ou rôle insuffisant",
            "content": {"application/problem+json": {}},
        },
    }


__all__ = [
    "COMMON_RESPONSES",
    "ConflictErrorResponse",
    "ProblemDetailResponse",
    "UsageLimitErrorResponse",
    "ValidationErrorResponse",
    "admin_responses",
    "auth_responses",
    "build_responses",
    "create_responses",
    "delete_responses",
    "limited_create_responses",
    "list_responses",
    "read_responses",
    "update_responses",
]
