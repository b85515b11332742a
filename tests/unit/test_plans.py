"""Tests unitaires du catalogue des plans d'abonnement."""

import pytest

from app.core.plans import (
    PAID_PLAN_LIMITS,
    SUBSCRIPTION_LIMITS,
    UNLIMITED,
    get_features_by_category,
    get_limit_message,
    get_plan_features,
    get_plan_limits,
    get_upgrade_prompt,
    has_feature,
    is_within_limit,
    normalize_plan,
    plan_satisfies,
    required_plan_for_path,
)


class TestPlanOrdering:
    @pytest.mark.parametrize(
        ("current", "required", "expected"),
        [
            ("free", "free", True),
            ("free", "pro", False),
            ("pro", "free", True),
            ("pro", "enterprise", False),
            ("enterprise", "pro", True),
            (None, "free", True),
            ("legacy", "pro", False),
        ],
    )
    def test_plan_satisfies(self, current, required, expected):
        assert plan_satisfies(current, required) is expected

    def test_normalize_plan(self):
        assert normalize_plan("PRO") == "pro"
        assert normalize_plan(None) == "free"
        assert normalize_plan("gold") == "free"


class TestLimits:
    def test_free_plan_limits(self):
        assert get_plan_limits("free") == {
            "max_patients": 50,
            "max_appointments_per_month": 100,
            "max_inventory_items": 50,
            "max_users": 1,
            "max_transactions_per_month": 100,
        }

    def test_unknown_plan_falls_back_to_free(self):
        assert get_plan_limits("platinum") == get_plan_limits("free")

    def test_pro_default_is_unlimited_except_users(self):
        limits = get_plan_limits("pro")
        assert limits["max_patients"] == UNLIMITED
        assert limits["max_users"] == 5

    def test_paid_limits_written_by_payment(self):
        assert PAID_PLAN_LIMITS["pro"]["max_patients"] == 1000
        assert PAID_PLAN_LIMITS["pro"]["max_users"] == 10
        assert PAID_PLAN_LIMITS["enterprise"]["max_users"] == 50

    def test_features_are_cumulative(self):
        free = set(SUBSCRIPTION_LIMITS["free"]["features"])
        pro = set(SUBSCRIPTION_LIMITS["pro"]["features"])
        enterprise = set(SUBSCRIPTION_LIMITS["enterprise"]["features"])
        assert free < pro < enterprise

    @pytest.mark.parametrize(
        ("current", "limit", "expected"),
        [(10, 50, True), (50, 50, True), (51, 50, False), (10_000, UNLIMITED, True), (5, None, True)],
    )
    def test_is_within_limit(self, current, limit, expected):
        assert is_within_limit(current, limit) is expected


class TestLimitMessages:
    def test_unlimited(self):
        assert get_limit_message("max_patients", 12, UNLIMITED) == "Unlimited"

    def test_counter_below_threshold(self):
        assert get_limit_message("max_patients", 10, 50) == "You have used 10 of 50 patients."

    def test_warning_from_ninety_percent(self):
        message = get_limit_message("max_transactions_per_month", 90, 100)
        assert message.startswith("You have reached 90% of your transactions limit (90/100)")

    def test_zero_limit(self):
        assert "100%" in get_limit_message("max_users", 0, 0)


class TestFeatures:
    def test_has_feature(self):
        assert has_feature("free", "appointments") is True
        assert has_feature("free", "pharmacy_analytics") is False
        assert has_feature("pro", "pharmacy_analytics") is True
        assert has_feature("pro", "api_access") is False
        assert has_feature("enterprise", "unknown_feature") is False

    def test_plan_features_grouped_by_category(self):
        grouped = get_plan_features("free")
        assert {f.id for f in grouped["management"]} == {"appointments", "inventory"}
        assert "analytics" not in grouped

    def test_features_by_category(self):
        assert {f.id for f in get_features_by_category("integration")} == {"api_access"}

    def test_upgrade_prompt(self):
        assert get_upgrade_prompt("api_access") == (
            "Upgrade to Enterprise plan to access this feature"
        )
        assert get_upgrade_prompt("appointments") == ""
        assert get_upgrade_prompt("missing") == ""


class TestRouteRequirements:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/appointments", "free"),
            ("/pharmacy/medications", "free"),
            ("/analytics/revenue", "pro"),
            ("/settings/integrations", "enterprise"),
            ("/settings/users/123", "pro"),
            ("/patients", None),
            ("/appointmentsx", None),
        ],
    )
    def test_required_plan_for_path(self, path, expected):
        assert required_plan_for_path(path) == expected
