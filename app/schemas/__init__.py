"""Schemas Pydantic pour validation des donnees."""

from app.schemas.responses import (
    COMMON_RESPONSES,
    ConflictErrorResponse,
    ProblemDetailResponse,
    UsageLimitErrorResponse,
    ValidationErrorResponse,
    admin_responses,
    auth_responses,
    build_responses,
    create_responses,
    delete_responses,
    limited_create_responses,
    list_responses,
    read_responses,
    update_responses,
)

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
