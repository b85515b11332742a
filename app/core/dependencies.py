"""Dependances FastAPI : contrôle d'accès par plan d'abonnement."""

import logging
from typing import Annotated

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import NotFoundError, PlanUpgradeRequiredError
from app.core.plans import get_feature, get_upgrade_prompt, normalize_plan, plan_satisfies
from app.core.security import StaffContext, get_staff_context
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)


async def get_tenant_plan(
    ctx: Annotated[StaffContext, Depends(get_staff_context)],
    db: Annotated[AsyncSession, Depends(get_session)],
) -> str:
    """
    Recupere le plan courant du tenant de l'appelant.

    Raises:
        NotFoundError: Si le tenant du profil n'existe plus
    """
    result = await db.execute(select(Tenant.plan_type).where(Tenant.id == ctx.tenant_id))
    plan_type = result.scalar_one_or_none()
    if plan_type is None:
        raise NotFoundError(resource_type="Tenant", resource_id=ctx.tenant_id)
    return normalize_plan(plan_type)


def require_plan(required_plan: str):
    """
    Dependency factory : exige un plan minimum pour la route.

    Example:
        router = APIRouter(dependencies=[Depends(require_plan("pro"))])
    """

    async def plan_checker(
        ctx: Annotated[StaffContext, Depends(get_staff_context)],
        plan_type: Annotated[str, Depends(get_tenant_plan)],
    ) -> str:
        if not plan_satisfies(plan_type, required_plan):
            logger.info(
                f"Plan {plan_type} insuffisant pour le tenant {ctx.tenant_id} "
                f"(requis: {required_plan})"
            )
            raise PlanUpgradeRequiredError(required_plan=required_plan, current_plan=plan_type)
        return plan_type

    return plan_checker


def require_feature(feature_id: str):
    """Dependency factory : exige qu'une fonctionnalité soit incluse dans le plan du tenant."""
    feature = get_feature(feature_id)
    if feature is None:
        raise ValueError(f"Fonctionnalité inconnue: {feature_id}")

    async def feature_checker(
        plan_type: Annotated[str, Depends(get_tenant_plan)],
    ) -> str:
        if not plan_satisfies(plan_type, feature.required_plan):
            raise PlanUpgradeRequiredError(
                required_plan=feature.required_plan,
                current_plan=plan_type,
                detail=get_upgrade_prompt(feature_id),
                feature=feature_id,
            )
        return plan_type

    return feature_checker
