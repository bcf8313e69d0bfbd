"""Tests for the static plan catalog."""

import pytest

from reviewqr.features.plans.service import PlanCatalog, build_default_catalog, get_plan_catalog
from reviewqr.models.plan import FeatureKey, Plan, PlanId, UNLIMITED


def test_every_plan_defines_every_feature():
    """Both plans carry a limit for each feature key."""
    catalog = build_default_catalog()
    for plan in catalog.get_all_plans():
        for key in FeatureKey:
            assert plan.limit_for(key.value) is not None, f"{plan.id} missing {key.value}"


def test_free_limits():
    plan = get_plan_catalog().get_plan("FREE")
    assert plan.monthly_price == 0
    assert plan.limit_for("aiEnhancementsPerMonth") == 5
    assert plan.limit_for("reviewsPerMonth") == 10
    assert plan.limit_for("basicAnalytics") is True
    assert plan.limit_for("advancedAnalytics") is False


def test_premium_is_unlimited():
    plan = get_plan_catalog().get_plan("PREMIUM")
    assert plan.limit_for("aiEnhancementsPerMonth") == UNLIMITED
    assert plan.limit_for("reviewsPerMonth") == UNLIMITED
    assert plan.limit_for("whiteLabel") is True


def test_lookup_is_case_insensitive():
    catalog = get_plan_catalog()
    assert catalog.get_plan("premium").id == PlanId.PREMIUM
    assert catalog.get_plan(" Premium ").id == PlanId.PREMIUM
    assert catalog.get_plan(PlanId.PREMIUM).id == PlanId.PREMIUM


def test_unknown_plan_falls_back_to_free():
    catalog = get_plan_catalog()
    assert catalog.get_plan("GOLD").id == PlanId.FREE
    assert catalog.get_plan(None).id == PlanId.FREE
    assert not catalog.has_plan("GOLD")
    assert catalog.has_plan("free")


def test_pricing_per_cycle():
    catalog = get_plan_catalog()
    monthly = catalog.get_plan_pricing("PREMIUM", "monthly")
    yearly = catalog.get_plan_pricing("PREMIUM", "yearly")
    free = catalog.get_plan_pricing("FREE", "yearly")

    assert monthly.price == 49.99
    assert monthly.billing_cycle == "monthly"
    assert yearly.price == 499.90
    assert yearly.billing_cycle == "yearly"
    assert free.price == 0
    assert free.billing_cycle == "free"


def test_upgrade_message_only_for_free():
    catalog = get_plan_catalog()
    assert "Premium" in catalog.upgrade_message("FREE")
    assert catalog.upgrade_message("PREMIUM") == ""


def test_catalog_rejects_incomplete_plan():
    """A plan missing a feature key is a configuration error."""
    partial = Plan(
        id=PlanId.FREE,
        name="Free",
        monthly_price=0,
        yearly_price=0,
        features={"reviewsPerMonth": 10},
    )
    with pytest.raises(ValueError, match="does not define features"):
        PlanCatalog({PlanId.FREE: partial})


def test_catalog_is_read_only():
    catalog = get_plan_catalog()
    with pytest.raises(TypeError):
        catalog._plans[PlanId.FREE] = None


def test_plan_limits_cannot_be_changed_in_place():
    free = get_plan_catalog().get_plan("FREE")
    with pytest.raises(TypeError):
        free.features["aiEnhancementsPerMonth"] = 999
    assert get_plan_catalog().get_plan("FREE").limit_for("aiEnhancementsPerMonth") == 5
    assert free.model_dump(mode="json")["features"]["aiEnhancementsPerMonth"] == 5
