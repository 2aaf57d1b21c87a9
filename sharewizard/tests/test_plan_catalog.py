"""
Tests for the plan catalog.
"""
import pytest
from pydantic import ValidationError

from sharewizard.features.plans.catalog import PlanCatalog
from sharewizard.models.plan import BillingPeriod, PlanTier


def test_default_limits(catalog):
    assert catalog.default_limit("free") == 3
    assert catalog.default_limit("trial") == 5
    assert catalog.default_limit("basicMonth") == 70
    assert catalog.default_limit("basicYear") == 900
    assert catalog.default_limit("flexy") == 20


def test_unknown_plan_falls_back_to_free(catalog):
    assert catalog.get_plan("enterprise").id == "free"
    assert catalog.default_limit(None) == 3
    assert catalog.tier_of("enterprise") == PlanTier.FREE


def test_tiers_and_periods(catalog):
    assert catalog.tier_of("basicMonth") == PlanTier.PAID
    assert catalog.tier_of("flexy") == PlanTier.FLEX
    assert catalog.get_plan("basicYear").billing_period == BillingPeriod.YEARLY
    assert catalog.get_plan("flexy").billing_period == BillingPeriod.ONE_TIME


def test_price_lookup_uses_settings(catalog):
    assert catalog.price_for("basicMonth") == "price_basic_month"
    assert catalog.price_for("free") is None
    assert catalog.price_for("nope") is None
    assert catalog.find_by_price("price_flexy").id == "flexy"
    assert catalog.find_by_price("price_unknown") is None


def test_prices_absent_without_configuration(test_settings):
    bare = PlanCatalog(test_settings.model_copy(update={"STRIPE_PRICE_BASIC_MONTH": None}))
    assert bare.price_for("basicMonth") is None


def test_display_helpers(catalog):
    assert catalog.format_plan_name("basicMonth") == "Basic Monthly Plan"
    assert catalog.format_plan_name("mystery") == "Unknown Plan"
    assert "Flex" in catalog.suggested_upgrade("basicYear")
    assert catalog.suggested_upgrade("mystery") == "Upgrade your plan to access more features."
    assert "70 requests/month" in catalog.plan_features("basicMonth")
    assert catalog.plan_features("mystery") == ("5 free requests during trial",)


def test_plan_definitions_are_immutable(catalog):
    plan = catalog.get_plan("free")
    with pytest.raises(ValidationError):
        plan.request_limit = 100
    assert catalog.default_limit("free") == 3
