"""
Subscription API routes.

- GET  /api/subscription/plans: Plan catalog with pricing
- GET  /api/subscription/current: Effective subscription, plan and usage
- POST /api/subscription/upgrade: Start a plan (PENDING until payment for paid plans)
- POST /api/subscription/cancel: Cancel (a paid plan stays usable until end of period)
- GET  /api/subscription/usage/{feature}: Allow/deny and remaining quota
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from reviewqr.api.deps import get_current_business
from reviewqr.core.errors import ValidationError
from reviewqr.features.entitlements.service import check_usage_limit
from reviewqr.features.plans.service import get_plan_catalog
from reviewqr.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    get_subscription,
    get_subscription_analytics,
)
from reviewqr.models.business import Business
from reviewqr.models.plan import FeatureKey


router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class UpgradeRequest(BaseModel):
    planId: str
    paymentReference: Optional[str] = None


@router.get("/plans")
def list_plans():
    """Every plan with monthly and yearly pricing."""
    catalog = get_plan_catalog()
    return {
        "data": [
            {
                **plan.model_dump(mode="json"),
                "pricing": {
                    cycle: catalog.get_plan_pricing(plan.id.value, cycle).model_dump(mode="json")
                    for cycle in ("monthly", "yearly")
                },
            }
            for plan in catalog.get_all_plans()
        ]
    }


@router.get("/current")
def current_subscription(business: Business = Depends(get_current_business)):
    """Effective plan plus the stored record (null when the business never upgraded)."""
    stored = get_subscription(business.id)
    analytics = get_subscription_analytics(business.id)
    return {
        "data": {
            **analytics,
            "storedSubscription": stored.model_dump(mode="json") if stored else None,
        }
    }


@router.post("/upgrade")
def upgrade(body: UpgradeRequest, business: Business = Depends(get_current_business)):
    subscription = create_subscription(business.id, body.planId, body.paymentReference)
    catalog = get_plan_catalog()
    return {
        "data": subscription.model_dump(mode="json"),
        "pricing": catalog.get_plan_pricing(subscription.plan_id.value).model_dump(mode="json"),
        "requiresPayment": subscription.status.value == "PENDING",
    }


@router.post("/cancel")
def cancel(business: Business = Depends(get_current_business)):
    subscription = cancel_subscription(business.id)
    return {
        "data": subscription.model_dump(mode="json"),
        "message": "Subscription cancelled. Your plan remains active until the end of the billing period.",
    }


@router.get("/usage/{feature}")
def feature_usage(feature: str, business: Business = Depends(get_current_business)):
    known = {key.value for key in FeatureKey}
    if feature not in known:
        raise ValidationError("Unknown feature", errors=[f"feature: must be one of {', '.join(sorted(known))}"])
    check = check_usage_limit(business.id, feature)
    return {"data": check.model_dump(mode="json")}
