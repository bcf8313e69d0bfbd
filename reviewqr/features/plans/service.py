"""
reviewqr/features/plans/service.py

Plan catalog.

Handles:
- Static plan definitions (FREE, PREMIUM) and their feature limits
- Case-insensitive lookup with FREE fallback
- Pricing per billing cycle
- Upgrade guidance for denied entitlements

The catalog is immutable and built once; callers receive it by injection
(`catalog=` arguments) or through `get_plan_catalog()`.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from reviewqr.models.plan import FeatureKey, Plan, PlanId, PlanPricing, UNLIMITED


# Default plan configurations
DEFAULT_PLANS = {
    PlanId.FREE: {
        "name": "Free",
        "monthly_price": 0.0,
        "yearly_price": 0.0,
        "features": {
            FeatureKey.AI_ENHANCEMENTS_PER_MONTH: 5,
            FeatureKey.REVIEWS_PER_MONTH: 10,
            FeatureKey.CUSTOM_FORM_FIELDS: 3,
            FeatureKey.MULTIPLE_LOCATIONS: 1,
            FeatureKey.BASIC_ANALYTICS: True,
            FeatureKey.ADVANCED_ANALYTICS: False,
            FeatureKey.EMAIL_SUPPORT: False,
            FeatureKey.CUSTOM_BRANDING: False,
            FeatureKey.PRIORITY_SUPPORT: False,
            FeatureKey.API_ACCESS: False,
            FeatureKey.WHITE_LABEL: False,
        },
    },
    PlanId.PREMIUM: {
        "name": "Premium",
        "monthly_price": 49.99,
        "yearly_price": 499.90,  # 10 months for a yearly cycle
        "features": {
            FeatureKey.AI_ENHANCEMENTS_PER_MONTH: UNLIMITED,
            FeatureKey.REVIEWS_PER_MONTH: UNLIMITED,
            FeatureKey.CUSTOM_FORM_FIELDS: UNLIMITED,
            FeatureKey.MULTIPLE_LOCATIONS: UNLIMITED,
            FeatureKey.BASIC_ANALYTICS: True,
            FeatureKey.ADVANCED_ANALYTICS: True,
            FeatureKey.EMAIL_SUPPORT: True,
            FeatureKey.CUSTOM_BRANDING: True,
            FeatureKey.PRIORITY_SUPPORT: True,
            FeatureKey.API_ACCESS: True,
            FeatureKey.WHITE_LABEL: True,
        },
    },
}

UPGRADE_MESSAGES = {
    PlanId.FREE: "Upgrade to Premium for unlimited AI enhancements and reviews.",
    PlanId.PREMIUM: "",
}


class PlanCatalog:
    """Read-only table of plans keyed by PlanId."""

    def __init__(self, plans: Mapping[PlanId, Plan], default_plan_id: PlanId = PlanId.FREE):
        missing = {key.value for key in FeatureKey}
        for plan in plans.values():
            undefined = missing - set(plan.features)
            if undefined:
                raise ValueError(
                    f"Plan {plan.id.value} does not define features: {', '.join(sorted(undefined))}"
                )
        if default_plan_id not in plans:
            raise ValueError(f"Default plan {default_plan_id.value} is not in the catalog")
        self._plans = MappingProxyType(dict(plans))
        self._default_plan_id = default_plan_id

    @property
    def default_plan(self) -> Plan:
        return self._plans[self._default_plan_id]

    def get_plan(self, plan_id: Optional[str]) -> Plan:
        """Look up a plan case-insensitively; unknown ids resolve to the default plan."""
        if isinstance(plan_id, PlanId):
            plan_id = plan_id.value
        key = (plan_id or "").strip().upper()
        try:
            return self._plans[PlanId(key)]
        except (ValueError, KeyError):
            return self.default_plan

    def get_all_plans(self) -> List[Plan]:
        return list(self._plans.values())

    def has_plan(self, plan_id: Optional[str]) -> bool:
        return (plan_id or "").strip().upper() in {p.value for p in self._plans}

    def get_plan_pricing(self, plan_id: str, billing_cycle: str = "monthly") -> PlanPricing:
        plan = self.get_plan(plan_id)
        if plan.monthly_price == 0:
            return PlanPricing(plan_id=plan.id, price=0.0, billing_cycle="free")
        if billing_cycle == "yearly":
            return PlanPricing(plan_id=plan.id, price=plan.yearly_price, billing_cycle="yearly")
        return PlanPricing(plan_id=plan.id, price=plan.monthly_price, billing_cycle="monthly")

    def upgrade_message(self, plan_id: Optional[str]) -> str:
        return UPGRADE_MESSAGES.get(self.get_plan(plan_id).id, "")


def build_default_catalog() -> PlanCatalog:
    """Construct the catalog from DEFAULT_PLANS."""
    plans: Dict[PlanId, Plan] = {}
    for plan_id, config in DEFAULT_PLANS.items():
        plans[plan_id] = Plan(
            id=plan_id,
            name=config["name"],
            monthly_price=config["monthly_price"],
            yearly_price=config["yearly_price"],
            features={key.value: value for key, value in config["features"].items()},
        )
    return PlanCatalog(plans)


_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    """Process-wide catalog, built on first use."""
    global _catalog
    if _catalog is None:
        _catalog = build_default_catalog()
    return _catalog
