"""Catalogue des plans d'abonnement : limites, fonctionnalités et exigences de routes.

Les limites valent ``UNLIMITED`` (-1) lorsqu'un plan n'a pas de plafond.
Les plans sont ordonnés ``free < pro < enterprise``.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict

PlanType = Literal["free", "pro", "enterprise"]
LimitType = Literal[
    "max_patients",
    "max_appointments_per_month",
    "max_inventory_items",
    "max_users",
    "max_transactions_per_month",
]
FeatureCategory = Literal["analytics", "management", "reporting", "integration", "billing"]

UNLIMITED = -1
DEFAULT_PLAN: PlanType = "free"

PLAN_ORDER: dict[str, int] = {"free": 0, "pro": 1, "enterprise": 2}

LIMIT_TYPES: tuple[LimitType, ...] = (
    "max_patients",
    "max_appointments_per_month",
    "max_inventory_items",
    "max_users",
    "max_transactions_per_month",
)

LIMIT_LABELS: dict[str, str] = {
    "max_patients": "patients",
    "max_appointments_per_month": "appointments",
    "max_inventory_items": "inventory items",
    "max_users": "users",
    "max_transactions_per_month": "transactions",
}


class Feature(BaseModel):
    """Fonctionnalité soumise à un plan minimum."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    required_plan: PlanType
    category: FeatureCategory


FEATURES: tuple[Feature, ...] = (
    # Analytics
    Feature(
        id="pharmacy_analytics",
        name="Pharmacy Analytics",
        description="Advanced pharmacy analytics and reporting",
        required_plan="pro",
        category="analytics",
    ),
    Feature(
        id="pharmacy_reports",
        name="Pharmacy Reports",
        description="Detailed pharmacy sales and inventory reports",
        required_plan="pro",
        category="analytics",
    ),
    Feature(
        id="basic_analytics",
        name="Basic Analytics",
        description="Access to basic analytics and reporting",
        required_plan="pro",
        category="analytics",
    ),
    Feature(
        id="advanced_analytics",
        name="Advanced Analytics",
        description="Access to predictive analytics and advanced reporting",
        required_plan="enterprise",
        category="analytics",
    ),
    Feature(
        id="reports",
        name="Reports Dashboard",
        description="Access to comprehensive reports and analytics dashboard",
        required_plan="pro",
        category="analytics",
    ),
    # Management
    Feature(
        id="appointments",
        name="Appointments",
        description="Schedule and manage patient appointments",
        required_plan="free",
        category="management",
    ),
    Feature(
        id="inventory",
        name="Inventory Management",
        description="Track medical supplies and equipment",
        required_plan="free",
        category="management",
    ),
    Feature(
        id="multi_location",
        name="Multi-Location Support",
        description="Manage multiple clinic locations",
        required_plan="enterprise",
        category="management",
    ),
    Feature(
        id="medication_batches",
        name="Medication Batches",
        description="Advanced batch management for medications including expiry tracking and stock movement",
        required_plan="pro",
        category="management",
    ),
    Feature(
        id="email_notifications",
        name="Email Notifications",
        description="Automated email notifications",
        required_plan="pro",
        category="management",
    ),
    # Reporting
    Feature(
        id="basic_reporting",
        name="Basic Reports",
        description="Generate basic reports and exports",
        required_plan="free",
        category="reporting",
    ),
    Feature(
        id="advanced_reporting",
        name="Advanced Reports",
        description="Advanced reporting and data export capabilities",
        required_plan="pro",
        category="reporting",
    ),
    # Integration
    Feature(
        id="api_access",
        name="API Access",
        description="Access to the API for custom integrations",
        required_plan="enterprise",
        category="integration",
    ),
    # Billing
    Feature(
        id="basic_billing",
        name="Basic Billing",
        description="Basic billing and invoicing",
        required_plan="free",
        category="billing",
    ),
    Feature(
        id="mpesa_integration",
        name="M-Pesa Integration",
        description="Integrated M-Pesa payments",
        required_plan="pro",
        category="billing",
    ),
)

_FEATURES_BY_ID: dict[str, Feature] = {feature.id: feature for feature in FEATURES}

_FREE_FEATURES = ["appointments", "inventory", "basic_reporting", "basic_billing"]
_PRO_FEATURES = [
    *_FREE_FEATURES,
    "basic_analytics",
    "advanced_reporting",
    "mpesa_integration",
    "email_notifications",
    "pharmacy_analytics",
]
_ENTERPRISE_FEATURES = [*_PRO_FEATURES, "advanced_analytics", "api_access", "multi_location"]

# Limites par défaut de chaque plan (ligne subscription_limits absente)
SUBSCRIPTION_LIMITS: dict[str, dict] = {
    "free": {
        "max_patients": 50,
        "max_appointments_per_month": 100,
        "max_inventory_items": 50,
        "max_users": 1,
        "max_transactions_per_month": 100,
        "features": _FREE_FEATURES,
    },
    "pro": {
        "max_patients": UNLIMITED,
        "max_appointments_per_month": UNLIMITED,
        "max_inventory_items": UNLIMITED,
        "max_users": 5,
        "max_transactions_per_month": UNLIMITED,
        "features": _PRO_FEATURES,
    },
    "enterprise": {
        "max_patients": UNLIMITED,
        "max_appointments_per_month": UNLIMITED,
        "max_inventory_items": UNLIMITED,
        "max_users": UNLIMITED,
        "max_transactions_per_month": UNLIMITED,
        "features": _ENTERPRISE_FEATURES,
    },
}

# Limites écrites par le webhook de paiement lors d'une souscription payante
PAID_PLAN_LIMITS: dict[str, dict] = {
    "pro": {
        "max_patients": 1000,
        "max_appointments_per_month": 500,
        "max_inventory_items": 1000,
        "max_users": 10,
        "max_transactions_per_month": 5000,
        "features": {
            "basic_analytics": True,
            "advanced_reporting": True,
            "mpesa_integration": True,
            "email_notifications": True,
            "pharmacy_analytics": True,
        },
    },
    "enterprise": {
        "max_patients": UNLIMITED,
        "max_appointments_per_month": UNLIMITED,
        "max_inventory_items": UNLIMITED,
        "max_users": 50,
        "max_transactions_per_month": UNLIMITED,
        "features": {feature_id: True for feature_id in _ENTERPRISE_FEATURES},
    },
}

ROUTE_PLAN_REQUIREMENTS: dict[str, PlanType] = {
    "/appointments": "free",
    "/inventory": "free",
    "/pharmacy": "free",
    "/services": "free",
    "/analytics": "pro",
    "/settings/users": "pro",
    "/settings/roles": "pro",
    "/settings/integrations": "enterprise",
}


def normalize_plan(plan: str | None) -> PlanType:
    """Retourne le plan connu correspondant, ``free`` par défaut."""
    if plan and plan.lower() in PLAN_ORDER:
        return plan.lower()  # type: ignore[return-value]
    return DEFAULT_PLAN


def plan_satisfies(current: str | None, required: str) -> bool:
    return PLAN_ORDER[normalize_plan(current)] >= PLAN_ORDER[normalize_plan(required)]


def get_plan_limits(plan: str | None) -> dict[str, int]:
    """Limites numériques par défaut d'un plan (sans la liste des fonctionnalités)."""
    limits = SUBSCRIPTION_LIMITS[normalize_plan(plan)]
    return {limit_type: limits[limit_type] for limit_type in LIMIT_TYPES}


def get_feature(feature_id: str) -> Feature | None:
    return _FEATURES_BY_ID.get(feature_id)


def get_features_for_plan(plan: str | None) -> list[Feature]:
    """Toutes les fonctionnalités dont le plan requis est inclus dans ``plan``."""
    return [feature for feature in FEATURES if plan_satisfies(plan, feature.required_plan)]


def get_plan_features(plan: str | None) -> dict[str, list[Feature]]:
    """Fonctionnalités accessibles regroupées par catégorie."""
    grouped: dict[str, list[Feature]] = {}
    for feature in get_features_for_plan(plan):
        grouped.setdefault(feature.category, []).append(feature)
    return grouped


def get_features_by_category(category: str) -> list[Feature]:
    return [feature for feature in FEATURES if feature.category == category]


def has_feature(plan: str | None, feature_id: str) -> bool:
    feature = get_feature(feature_id)
    if feature is None:
        return False
    return plan_satisfies(plan, feature.required_plan)


def get_upgrade_prompt(feature_id: str) -> str:
    feature = get_feature(feature_id)
    if feature is None or feature.required_plan == "free":
        return ""
    return f"Upgrade to {feature.required_plan.capitalize()} plan to access this feature"


def is_unlimited(limit: int | None) -> bool:
    return limit is None or limit == UNLIMITED


def is_within_limit(current: int, limit: int | None) -> bool:
    return is_unlimited(limit) or current <= limit


def get_limit_message(limit_type: str, current: int, limit: int | None) -> str:
    """
    Message d'usage affiché à l'utilisateur.

    Args:
        limit_type: Type de limite (ex: "max_patients")
        current: Usage courant
        limit: Limite du plan (-1 = illimité)

    Returns:
        "Unlimited", un avertissement à partir de 90 % ou un simple compteur
    """
    if is_unlimited(limit):
        return "Unlimited"

    label = LIMIT_LABELS.get(limit_type, limit_type)
    percentage = round(current / limit * 100) if limit > 0 else 100
    if percentage >= 90:
        return (
            f"You have reached {percentage}% of your {label} limit ({current}/{limit}). "
            "Please upgrade your plan to continue."
        )
    return f"You have used {current} of {limit} {label}."


def required_plan_for_path(path: str) -> PlanType | None:
    """Plan minimum exigé pour un chemin, selon le préfixe le plus long."""
    matches = [
        prefix
        for prefix in ROUTE_PLAN_REQUIREMENTS
        if path == prefix or path.startswith(prefix.rstrip("/") + "/")
    ]
    if not matches:
        return None
    return ROUTE_PLAN_REQUIREMENTS[max(matches, key=len)]
