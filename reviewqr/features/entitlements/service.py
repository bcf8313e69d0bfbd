"""
reviewqr/features/entitlements/service.py

Entitlement check against the effective plan and the usage ledger.

Handles:
- Allow/deny decisions for boolean gates and monthly caps
- Raising a structured 403 for callers that must be gated
- Size caps that are not monthly counters (e.g. fields per form)

Read-only: nothing here records usage. Any failure while deciding denies.
"""

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from reviewqr.core.errors import AppError, EntitlementDeniedError
from reviewqr.features.plans.service import PlanCatalog, get_plan_catalog
from reviewqr.features.subscriptions.service import resolve_effective_subscription
from reviewqr.features.usage.service import get_usage_count
from reviewqr.models.plan import FeatureKey, UNLIMITED
from reviewqr.models.usage import UsageCheck


logger = logging.getLogger(__name__)


def _feature_name(feature_key: Union[FeatureKey, str]) -> str:
    if isinstance(feature_key, FeatureKey):
        return feature_key.value
    return str(feature_key)


def check_usage_limit(
    business_id: str,
    feature_key: Union[FeatureKey, str],
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> UsageCheck:
    """
    Decide whether `business_id` may use `feature_key` now.

    Limit semantics:
    - missing key: deny
    - -1: allowed, limit reported as "unlimited"
    - bool: the gate itself, no counting
    - int: allowed while this month's count is below the cap
    """
    catalog = catalog or get_plan_catalog()
    feature = _feature_name(feature_key)

    try:
        subscription = resolve_effective_subscription(business_id, catalog=catalog, now=now)
        plan = catalog.get_plan(subscription.plan_id.value)
        limit = plan.limit_for(feature)

        if limit is None:
            logger.warning(
                "[entitlement] DENIED",
                extra={"business_id": business_id, "feature": feature, "reason": "feature not in plan"},
            )
            return UsageCheck(
                allowed=False,
                plan_id=plan.id.value,
                plan_name=plan.name,
                message=f"Feature {feature} is not available",
            )

        if isinstance(limit, bool):
            if not limit:
                logger.warning(
                    "[entitlement] DENIED",
                    extra={"business_id": business_id, "feature": feature, "plan_id": plan.id.value},
                )
            return UsageCheck(
                allowed=limit,
                limit=limit,
                plan_id=plan.id.value,
                plan_name=plan.name,
                message=None if limit else f"{feature} is not included in the {plan.name} plan",
            )

        used = get_usage_count(business_id, feature, now)
        if limit == UNLIMITED:
            return UsageCheck(
                allowed=True,
                limit="unlimited",
                used=used,
                remaining="unlimited",
                plan_id=plan.id.value,
                plan_name=plan.name,
            )

        allowed = used < limit
        if not allowed:
            logger.warning(
                "[entitlement] LIMIT_REACHED",
                extra={
                    "business_id": business_id,
                    "feature": feature,
                    "used": used,
                    "limit": limit,
                    "plan_id": plan.id.value,
                },
            )
        return UsageCheck(
            allowed=allowed,
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
            plan_id=plan.id.value,
            plan_name=plan.name,
            message=None if allowed else f"Monthly {feature} limit reached ({used}/{limit})",
        )
    except (AppError, SQLAlchemyError) as exc:
        logger.warning(
            "[entitlement] DENIED",
            extra={"business_id": business_id, "feature": feature, "reason": str(exc)},
        )
        return UsageCheck(allowed=False, message=f"Unable to verify usage limits: {exc}")


def require_feature(
    business_id: str,
    feature_key: Union[FeatureKey, str],
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> UsageCheck:
    """
    Like check_usage_limit, but raise when denied.

    Raises:
        EntitlementDeniedError: with used, limit, currentPlan, upgradeMessage details
    """
    catalog = catalog or get_plan_catalog()
    check = check_usage_limit(business_id, feature_key, catalog=catalog, now=now)
    if check.allowed:
        return check

    raise EntitlementDeniedError(
        check.message or "Usage limit exceeded",
        details={
            "feature": _feature_name(feature_key),
            "used": check.used,
            "limit": check.limit,
            "currentPlan": check.plan_name,
            "upgradeMessage": catalog.upgrade_message(check.plan_id),
        },
    )


def require_capacity(
    business_id: str,
    feature_key: Union[FeatureKey, str],
    requested: int,
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Deny when `requested` exceeds a static numeric cap of the effective plan.

    The usage ledger is not consulted: the cap bounds a size (fields on one
    form), not a monthly count.

    Raises:
        EntitlementDeniedError: cap exceeded, feature missing, or the plan could not be resolved
    """
    catalog = catalog or get_plan_catalog()
    feature = _feature_name(feature_key)
    try:
        subscription = resolve_effective_subscription(business_id, catalog=catalog, now=now)
    except (AppError, SQLAlchemyError) as exc:
        logger.warning(
            "[entitlement] DENIED",
            extra={"business_id": business_id, "feature": feature, "reason": str(exc)},
        )
        raise EntitlementDeniedError(f"Unable to verify plan limits: {exc}") from exc

    plan = catalog.get_plan(subscription.plan_id.value)
    limit = plan.limit_for(feature)
    numeric = isinstance(limit, int) and not isinstance(limit, bool)
    if numeric and (limit == UNLIMITED or requested <= limit):
        return

    logger.warning(
        "[entitlement] LIMIT_REACHED",
        extra={
            "business_id": business_id,
            "feature": feature,
            "requested": requested,
            "limit": limit,
            "plan_id": plan.id.value,
        },
    )
    raise EntitlementDeniedError(
        f"The {plan.name} plan allows at most {limit} {feature}"
        if numeric
        else f"{feature} is not available on the {plan.name} plan",
        details={
            "feature": feature,
            "requested": requested,
            "limit": limit,
            "currentPlan": plan.name,
            "upgradeMessage": catalog.upgrade_message(plan.id.value),
        },
    )
