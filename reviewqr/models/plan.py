"""
reviewqr/models/plan.py

Plan model for subscription tiers.

Plans are static: they live in the plan catalog, not in the database.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Union
from pydantic import BaseModel, ConfigDict, field_serializer, field_validator


# Numeric limit meaning "no cap"
UNLIMITED = -1


class PlanId(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"


class FeatureKey(str, Enum):
    """Gated capabilities. Every plan must define every key."""
    AI_ENHANCEMENTS_PER_MONTH = "aiEnhancementsPerMonth"
    REVIEWS_PER_MONTH = "reviewsPerMonth"
    CUSTOM_FORM_FIELDS = "customFormFields"
    MULTIPLE_LOCATIONS = "multipleLocations"
    BASIC_ANALYTICS = "basicAnalytics"
    ADVANCED_ANALYTICS = "advancedAnalytics"
    EMAIL_SUPPORT = "emailSupport"
    CUSTOM_BRANDING = "customBranding"
    PRIORITY_SUPPORT = "prioritySupport"
    API_ACCESS = "apiAccess"
    WHITE_LABEL = "whiteLabel"


Limit = Union[bool, int]


class Plan(BaseModel):
    """
    Plan represents a subscription tier and the limits it grants.

    Limit values:
    - -1 (UNLIMITED): no cap
    - bool: feature gate
    - int >= 0: monthly cap
    """
    model_config = ConfigDict(frozen=True)

    id: PlanId
    name: str
    monthly_price: float
    yearly_price: float
    features: Mapping[str, Limit]

    @field_validator("features", mode="after")
    @classmethod
    def freeze_features(cls, value: Mapping[str, Limit]) -> Mapping[str, Limit]:
        return MappingProxyType(dict(value))

    @field_serializer("features")
    def serialize_features(self, value: Mapping[str, Limit]) -> Dict[str, Any]:
        return dict(value)

    def limit_for(self, feature_key: str) -> Limit | None:
        return self.features.get(feature_key)


class PlanPricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: PlanId
    price: float
    billing_cycle: str  # free | monthly | yearly
