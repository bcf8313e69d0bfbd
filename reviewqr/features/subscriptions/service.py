"""
reviewqr/features/subscriptions/service.py

Subscription record lifecycle.

Handles:
- Effective subscription resolution (implicit FREE when no record exists)
- Upgrade / payment confirmation / cancellation
- Expiry sweep for periods that have ended
- Usage summary against the current plan

One row per business. Upgrades overwrite the row in place; rows are never deleted.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from reviewqr.core.clock import ensure_utc, normalize_now
from reviewqr.core.config import settings
from reviewqr.core.database import businesses, get_db_session, subscriptions
from reviewqr.core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from reviewqr.features.plans.service import PlanCatalog, get_plan_catalog
from reviewqr.features.usage.service import get_usage_count
from reviewqr.models.plan import FeatureKey, PlanId, UNLIMITED
from reviewqr.models.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)

# Features reported by get_subscription_analytics
TRACKED_USAGE = {
    "aiEnhancements": FeatureKey.AI_ENHANCEMENTS_PER_MONTH,
    "reviews": FeatureKey.REVIEWS_PER_MONTH,
}


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        business_id=row.business_id,
        plan_id=PlanId(row.plan_id),
        plan_name=row.plan_name,
        price=row.price,
        status=SubscriptionStatus(row.status),
        payment_reference=row.payment_reference,
        start_date=ensure_utc(row.start_date),
        end_date=ensure_utc(row.end_date) if row.end_date else None,
        cancelled_at=ensure_utc(row.cancelled_at) if row.cancelled_at else None,
    )


def _implicit_free(business_id: str, now: datetime, catalog: PlanCatalog) -> Subscription:
    plan = catalog.default_plan
    return Subscription(
        business_id=business_id,
        plan_id=plan.id,
        plan_name=plan.name,
        price=0.0,
        status=SubscriptionStatus.ACTIVE,
        start_date=now,
        implicit=True,
    )


def _business_exists(session: Session, business_id: str) -> bool:
    return session.execute(
        select(businesses.c.id).where(businesses.c.id == business_id)
    ).first() is not None


def is_usable(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    """Whether the subscription's own plan limits apply at `now`."""
    current = normalize_now(now)
    if subscription.implicit:
        return True
    if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED):
        return False
    return subscription.end_date is None or subscription.end_date > current


def get_subscription(business_id: str) -> Optional[Subscription]:
    """Stored subscription row, or None."""
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions).where(subscriptions.c.business_id == business_id)
        ).first()
    return _row_to_subscription(row) if row else None


def resolve_effective_subscription(
    business_id: str,
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Subscription whose plan governs limits right now. Never None.

    - No stored record: implicit ACTIVE FREE
    - PENDING (payment not confirmed) or EXPIRED: implicit FREE
    - CANCELLED: stored plan until end_date, then FREE
    - ACTIVE past end_date (sweep not yet run): FREE

    Raises:
        NotFoundError: business does not exist
    """
    catalog = catalog or get_plan_catalog()
    current = normalize_now(now)
    with get_db_session() as session:
        if not _business_exists(session, business_id):
            raise NotFoundError(f"Business {business_id} not found")
        row = session.execute(
            select(subscriptions).where(subscriptions.c.business_id == business_id)
        ).first()

    if row is None:
        return _implicit_free(business_id, current, catalog)

    stored = _row_to_subscription(row)
    if is_usable(stored, current):
        return stored
    return _implicit_free(business_id, current, catalog)


def create_subscription(
    business_id: str,
    plan_id: str,
    payment_reference: Optional[str] = None,
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Start (or replace) the business's subscription.

    Free plans are ACTIVE immediately; paid plans stay PENDING until
    confirm_payment. The period is SUBSCRIPTION_PERIOD_DAYS from `now`.

    Raises:
        ValidationError: unknown plan
        NotFoundError: business does not exist
    """
    catalog = catalog or get_plan_catalog()
    if not catalog.has_plan(plan_id):
        raise ValidationError("Invalid plan ID", errors=[f"planId: unknown plan {plan_id!r}"])

    plan = catalog.get_plan(plan_id)
    current = normalize_now(now)
    end_date = current + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)
    status = SubscriptionStatus.ACTIVE if plan.monthly_price == 0 else SubscriptionStatus.PENDING
    values = {
        "plan_id": plan.id.value,
        "plan_name": plan.name,
        "price": plan.monthly_price,
        "status": status.value,
        "payment_reference": payment_reference,
        "start_date": current,
        "end_date": end_date,
        "cancelled_at": None,
        "updated_at": current,
    }

    try:
        with get_db_session() as session:
            result = session.execute(
                update(subscriptions)
                .where(subscriptions.c.business_id == business_id)
                .values(**values)
            )
            if result.rowcount == 0:
                if not _business_exists(session, business_id):
                    raise NotFoundError(f"Business {business_id} not found")
                session.execute(
                    insert(subscriptions).values(
                        id=str(uuid4()),
                        business_id=business_id,
                        created_at=current,
                        **values,
                    )
                )
            row = session.execute(
                select(subscriptions).where(subscriptions.c.business_id == business_id)
            ).first()
    except IntegrityError as exc:
        raise ConflictError("Subscription changed concurrently, retry the upgrade") from exc
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to store subscription: {exc}") from exc

    logger.info(
        "[subscriptions] created",
        extra={"business_id": business_id, "plan_id": plan.id.value, "status": status.value},
    )
    return _row_to_subscription(row)


def confirm_payment(
    business_id: str,
    payment_reference: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    PENDING -> ACTIVE. The paid period starts at confirmation time.

    Raises:
        NotFoundError: no subscription
        ConflictError: subscription is not awaiting payment
    """
    current = normalize_now(now)
    values: Dict[str, Any] = {
        "status": SubscriptionStatus.ACTIVE.value,
        "start_date": current,
        "end_date": current + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS),
        "updated_at": current,
    }
    if payment_reference:
        values["payment_reference"] = payment_reference

    try:
        with get_db_session() as session:
            result = session.execute(
                update(subscriptions)
                .where(subscriptions.c.business_id == business_id)
                .where(subscriptions.c.status == SubscriptionStatus.PENDING.value)
                .values(**values)
            )
            row = session.execute(
                select(subscriptions).where(subscriptions.c.business_id == business_id)
            ).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to confirm payment: {exc}") from exc

    if row is None:
        raise NotFoundError("No subscription found")
    if result.rowcount == 0:
        raise ConflictError(f"Subscription is {row.status}, not awaiting payment")

    logger.info("[subscriptions] payment confirmed", extra={"business_id": business_id})
    return _row_to_subscription(row)


def cancel_subscription(business_id: str, *, now: Optional[datetime] = None) -> Subscription:
    """
    Mark the subscription CANCELLED.

    A paid period stays usable until end_date. A PENDING subscription was never
    paid, so its period ends at cancellation and limits fall back to FREE.

    Raises:
        NotFoundError: no subscription
        ConflictError: already cancelled or expired
    """
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            result = session.execute(
                update(subscriptions)
                .where(subscriptions.c.business_id == business_id)
                .where(subscriptions.c.status.in_([
                    SubscriptionStatus.ACTIVE.value,
                    SubscriptionStatus.PENDING.value,
                ]))
                .values(
                    status=SubscriptionStatus.CANCELLED.value,
                    cancelled_at=current,
                    end_date=case(
                        (subscriptions.c.status == SubscriptionStatus.PENDING.value, current),
                        else_=subscriptions.c.end_date,
                    ),
                    updated_at=current,
                )
            )
            row = session.execute(
                select(subscriptions).where(subscriptions.c.business_id == business_id)
            ).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to cancel subscription: {exc}") from exc

    if row is None:
        raise NotFoundError("No subscription found")
    if result.rowcount == 0:
        raise ConflictError(f"Subscription is already {row.status}")

    logger.info("[subscriptions] cancelled", extra={"business_id": business_id})
    return _row_to_subscription(row)


def expire_subscriptions(now: Optional[datetime] = None) -> int:
    """ACTIVE/CANCELLED subscriptions whose end_date has passed become EXPIRED. Returns the count."""
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            result = session.execute(
                update(subscriptions)
                .where(subscriptions.c.status.in_([
                    SubscriptionStatus.ACTIVE.value,
                    SubscriptionStatus.CANCELLED.value,
                ]))
                .where(subscriptions.c.end_date < current)
                .values(status=SubscriptionStatus.EXPIRED.value, updated_at=current)
            )
            expired = result.rowcount or 0
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to expire subscriptions: {exc}") from exc

    logger.info("[subscriptions] expiry sweep", extra={"expired_count": expired})
    return expired


def _usage_entry(used: int, limit: Any) -> Dict[str, Any]:
    if limit == UNLIMITED:
        return {"used": used, "limit": "unlimited", "percentage": 0}
    if not limit:
        return {"used": used, "limit": limit, "percentage": 100 if used else 0}
    return {"used": used, "limit": limit, "percentage": min(100, round(used / limit * 100))}


def get_subscription_analytics(
    business_id: str,
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Current plan plus this month's usage and percentage of each capped feature."""
    catalog = catalog or get_plan_catalog()
    subscription = resolve_effective_subscription(business_id, catalog=catalog, now=now)
    plan = catalog.get_plan(subscription.plan_id.value)

    usage = {}
    for label, feature in TRACKED_USAGE.items():
        used = get_usage_count(business_id, feature.value, now)
        usage[label] = _usage_entry(used, plan.limit_for(feature.value))

    return {
        "subscription": subscription.model_dump(mode="json"),
        "plan": plan.model_dump(mode="json"),
        "usage": usage,
    }
