"""
RFC 9457 Problem Details pour HTTP APIs - Exceptions core-africare-practice.

Ce module réexporte les exceptions du module fastapi-errors-rfc9457 et
définit les erreurs métier de la pratique (limites d'abonnement, stock,
agenda, invitations). Les membres d'extension (``limit_type``,
``required_plan``, ``available``...) sont ajoutés au corps de la réponse.
"""

from typing import Any

from fastapi_errors_rfc9457 import (
    ConflictError,
    ForbiddenError,
    InternalServerError,
    ProblemDetail,
    RFC9457Exception,
    ServiceUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from fastapi_errors_rfc9457 import NotFoundError as _NotFoundError

ERROR_TYPE_BASE = "https://africare.app/errors"


class NotFoundError(_NotFoundError):
    """
    Ressource absente du tenant courant.

    Le détail est déduit du type et de l'identifiant lorsqu'il n'est pas fourni;
    les UUID sont sérialisés en chaîne dans le corps de la réponse.
    """

    def __init__(
        self,
        detail: str | None = None,
        resource_type: str | None = None,
        resource_id: Any = None,
        instance: str | None = None,
    ):
        if detail is None:
            detail = f"{resource_type or 'Resource'} {resource_id} not found"
        super().__init__(
            detail=detail,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            instance=instance,
        )


class BadRequestError(RFC9457Exception):
    """Requête incohérente avec les règles métier (400)."""

    def __init__(self, detail: str, instance: str | None = None, **extensions: Any):
        super().__init__(
            status_code=400,
            title="Bad Request",
            detail=detail,
            type_uri=f"{ERROR_TYPE_BASE}/bad-request",
            instance=instance,
            **extensions,
        )


class InvitationError(RFC9457Exception):
    """Invitation expirée, révoquée ou déjà utilisée."""

    def __init__(self, detail: str, instance: str | None = None):
        super().__init__(
            status_code=400,
            title="Invalid Invitation",
            detail=detail,
            type_uri=f"{ERROR_TYPE_BASE}/invalid-invitation",
            instance=instance,
        )


class UsageLimitExceededError(RFC9457Exception):
    """
    Exception levée lorsqu'un tenant atteint une limite de son abonnement.

    Le corps de la réponse contient ``limit_type``, ``current`` et ``limit``
    pour que le frontend puisse afficher l'invite de mise à niveau.

    Attributes:
        status_code: Code HTTP 403 (Forbidden)
        problem_detail: Détails de l'erreur au format RFC 9457

    Example:
        ```python
        raise UsageLimitExceededError(
            limit_type="max_patients",
            current=50,
            limit=50,
            detail="Patient limit reached (50/50). Please upgrade your plan to add more patients.",
        )
        ```
    """

    def __init__(
        self,
        limit_type: str,
        current: int,
        limit: int,
        detail: str | None = None,
        instance: str | None = None,
    ):
        super().__init__(
            status_code=403,
            title="Usage Limit Exceeded",
            detail=detail or f"Usage limit reached for {limit_type} ({current}/{limit})",
            type_uri=f"{ERROR_TYPE_BASE}/usage-limit-exceeded",
            instance=instance,
            limit_type=limit_type,
            current=current,
            limit=limit,
        )


class PlanUpgradeRequiredError(RFC9457Exception):
    """Fonctionnalité réservée à un plan supérieur à celui du tenant."""

    def __init__(
        self,
        required_plan: str,
        current_plan: str,
        detail: str | None = None,
        **extensions: Any,
    ):
        super().__init__(
            status_code=403,
            title="Plan Upgrade Required",
            detail=detail
            or f"This feature requires the {required_plan} plan (current plan: {current_plan})",
            type_uri=f"{ERROR_TYPE_BASE}/plan-upgrade-required",
            required_plan=required_plan,
            current_plan=current_plan,
            **extensions,
        )


class InsufficientStockError(RFC9457Exception):
    """
    Exception levée lorsqu'une vente demande plus que la quantité d'un lot.

    La vente est annulée en entier : aucun lot n'est décrémenté.
    """

    def __init__(self, batch_id: Any, requested: int, available: int):
        super().__init__(
            status_code=409,
            title="Insufficient Stock",
            detail=(
                f"Insufficient stock for batch {batch_id}: "
                f"requested {requested}, available {available}"
            ),
            type_uri=f"{ERROR_TYPE_BASE}/insufficient-stock",
            batch_id=str(batch_id),
            requested=requested,
            available=available,
        )


class AppointmentConflictError(RFC9457Exception):
    def __init__(self, detail: str = "The doctor already has an appointment at this time"):
        super().__init__(
            status_code=409,
            title="Appointment Conflict",
            detail=detail,
            type_uri=f"{ERROR_TYPE_BASE}/appointment-conflict",
        )


__all__ = [
    "AppointmentConflictError",
    "BadRequestError",
    "ConflictError",
    "ForbiddenError",
    "InsufficientStockError",
    "InternalServerError",
    "InvitationError",
    "NotFoundError",
    "PlanUpgradeRequiredError",
    "ProblemDetail",
    "RFC9457Exception",
    "ServiceUnavailableError",
    "UnauthorizedError",
    "UsageLimitExceededError",
    "ValidationError",
]
