from fastapi import APIRouter, Depends

from app.api.v1 import health
from app.api.v1.endpoints import (
    appointments,
    cashier,
    patients,
    pharmacy,
    reports,
    sales,
    staff,
    subscription,
    tenants,
    webhooks,
)
from app.core.dependencies import require_plan
from app.core.plans import required_plan_for_path
from app.schemas import COMMON_RESPONSES


def plan_dependencies(prefix: str) -> list:
    """Dépendance ``require_plan`` du préfixe selon ROUTE_PLAN_REQUIREMENTS (aucune si non listé)."""
    required = required_plan_for_path(prefix)
    return [Depends(require_plan(required))] if required else []


# Router principal avec réponses RFC 9457 par défaut
router = APIRouter(responses=COMMON_RESPONSES)

router.include_router(health.router, tags=["health"])
router.include_router(tenants.router, prefix="/tenants", tags=["tenants"])
router.include_router(staff.router, prefix="/staff", tags=["staff"])
router.include_router(patients.router, prefix="/patients", tags=["patients"])
router.include_router(
    appointments.services_router,
    prefix="/services",
    tags=["services"],
    dependencies=plan_dependencies("/services"),
)
router.include_router(
    appointments.router,
    prefix="/appointments",
    tags=["appointments"],
    dependencies=plan_dependencies("/appointments"),
)
router.include_router(
    pharmacy.router,
    prefix="/pharmacy",
    tags=["pharmacy"],
    dependencies=plan_dependencies("/pharmacy"),
)
router.include_router(sales.router, prefix="/sales", tags=["sales"])
router.include_router(cashier.router, prefix="/cashier", tags=["cashier"])
router.include_router(
    reports.router, prefix="/reports", tags=["reports"], dependencies=plan_dependencies("/reports")
)
router.include_router(subscription.router, prefix="/subscription", tags=["subscription"])
router.include_router(subscription.audit_router, prefix="/audit-logs", tags=["audit"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
