"""
Tests for the subscription record lifecycle.

FREE -> ACTIVE immediately; paid plans PENDING -> (confirm) ACTIVE ->
(cancel) CANCELLED -> (period end) EXPIRED.
"""

from datetime import datetime, timedelta, timezone

import pytest

from reviewqr.core.errors import ConflictError, NotFoundError, ValidationError
from reviewqr.features.entitlements.service import check_usage_limit
from reviewqr.features.subscriptions.service import (
    cancel_subscription,
    confirm_payment,
    create_subscription,
    expire_subscriptions,
    get_subscription,
    get_subscription_analytics,
    is_usable,
    resolve_effective_subscription,
)
from reviewqr.features.usage.service import record_usage
from reviewqr.models.subscription import SubscriptionStatus
from reviewqr.workers.expire_subscriptions import run_expiry_sweep


NOW = datetime(2025, 5, 1, 10, 0, tzinfo=timezone.utc)


def test_business_without_record_is_implicit_free(business):
    sub = resolve_effective_subscription(business.id, now=NOW)
    assert sub.implicit is True
    assert sub.plan_id.value == "FREE"
    assert sub.status == SubscriptionStatus.ACTIVE
    assert get_subscription(business.id) is None


def test_unknown_business_is_not_found():
    with pytest.raises(NotFoundError):
        resolve_effective_subscription("missing", now=NOW)


def test_free_subscription_is_active_immediately(business):
    sub = create_subscription(business.id, "free", now=NOW)
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.price == 0
    assert sub.end_date == NOW + timedelta(days=30)


def test_premium_waits_for_payment(business):
    sub = create_subscription(business.id, "PREMIUM", "checkout-1", now=NOW)
    assert sub.status == SubscriptionStatus.PENDING
    assert sub.price == 49.99
    assert sub.payment_reference == "checkout-1"
    assert resolve_effective_subscription(business.id, now=NOW).plan_id.value == "FREE"

    later = NOW + timedelta(hours=2)
    confirmed = confirm_payment(business.id, "pay_abc", now=later)
    assert confirmed.status == SubscriptionStatus.ACTIVE
    assert confirmed.payment_reference == "pay_abc"
    assert confirmed.start_date == later
    assert confirmed.end_date == later + timedelta(days=30)
    assert resolve_effective_subscription(business.id, now=later).plan_id.value == "PREMIUM"


def test_upgrade_replaces_the_single_record(business):
    create_subscription(business.id, "FREE", now=NOW)
    create_subscription(business.id, "PREMIUM", now=NOW)
    stored = get_subscription(business.id)
    assert stored.plan_id.value == "PREMIUM"
    assert stored.status == SubscriptionStatus.PENDING


def test_unknown_plan_is_rejected(business):
    with pytest.raises(ValidationError) as exc_info:
        create_subscription(business.id, "GOLD", now=NOW)
    assert exc_info.value.errors


def test_subscribe_unknown_business():
    with pytest.raises(NotFoundError):
        create_subscription("missing", "FREE", now=NOW)


def test_confirm_requires_pending(business):
    with pytest.raises(NotFoundError):
        confirm_payment(business.id, now=NOW)

    create_subscription(business.id, "FREE", now=NOW)
    with pytest.raises(ConflictError):
        confirm_payment(business.id, now=NOW)


def test_cancelled_plan_usable_until_end_date(business):
    create_subscription(business.id, "PREMIUM", now=NOW)
    confirm_payment(business.id, now=NOW)
    cancelled = cancel_subscription(business.id, now=NOW + timedelta(days=1))

    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.cancelled_at == NOW + timedelta(days=1)
    assert is_usable(cancelled, NOW + timedelta(days=29))
    assert resolve_effective_subscription(business.id, now=NOW + timedelta(days=29)).plan_id.value == "PREMIUM"
    assert resolve_effective_subscription(business.id, now=NOW + timedelta(days=31)).plan_id.value == "FREE"


def test_cancelling_unpaid_premium_keeps_free_limits(business):
    create_subscription(business.id, "PREMIUM", now=NOW)
    before = check_usage_limit(business.id, "aiEnhancementsPerMonth", now=NOW)
    assert (before.limit, before.plan_id) == (5, "FREE")

    cancelled = cancel_subscription(business.id, now=NOW + timedelta(hours=1))
    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.end_date == NOW + timedelta(hours=1)
    assert not is_usable(cancelled, NOW + timedelta(hours=2))

    after = check_usage_limit(business.id, "aiEnhancementsPerMonth", now=NOW + timedelta(hours=2))
    assert (after.limit, after.plan_id) == (5, "FREE")
    assert resolve_effective_subscription(business.id, now=NOW + timedelta(hours=2)).implicit is True


def test_cancel_twice_conflicts(business):
    create_subscription(business.id, "FREE", now=NOW)
    cancel_subscription(business.id, now=NOW)
    with pytest.raises(ConflictError):
        cancel_subscription(business.id, now=NOW)


def test_active_past_end_date_resolves_to_free(business):
    """Before the sweep runs, an ended period already stops granting its plan."""
    create_subscription(business.id, "PREMIUM", now=NOW)
    confirm_payment(business.id, now=NOW)
    sub = resolve_effective_subscription(business.id, now=NOW + timedelta(days=45))
    assert sub.implicit is True
    assert sub.plan_id.value == "FREE"


def test_expire_subscriptions(business, owner_id):
    from reviewqr.features.businesses.service import create_business

    other = create_business(owner_id, "Second Location")
    create_subscription(business.id, "PREMIUM", now=NOW)
    confirm_payment(business.id, now=NOW)
    create_subscription(other.id, "FREE", now=NOW + timedelta(days=20))

    assert expire_subscriptions(NOW + timedelta(days=10)) == 0
    assert expire_subscriptions(NOW + timedelta(days=31)) == 1
    assert get_subscription(business.id).status == SubscriptionStatus.EXPIRED
    assert get_subscription(other.id).status == SubscriptionStatus.ACTIVE
    # Already expired rows are not touched again
    assert expire_subscriptions(NOW + timedelta(days=31)) == 0


def test_expiry_sweep_dry_run(business):
    create_subscription(business.id, "FREE", now=NOW)
    later = NOW + timedelta(days=40)

    preview = run_expiry_sweep(now=later, dry_run=True)
    assert preview["candidates"] == 1
    assert preview["expired"] == 0
    assert get_subscription(business.id).status == SubscriptionStatus.ACTIVE

    result = run_expiry_sweep(now=later)
    assert result["expired"] == 1
    assert result["ran_at"] == later.isoformat()
    assert get_subscription(business.id).status == SubscriptionStatus.EXPIRED


def test_subscription_analytics_percentages(business):
    for _ in range(2):
        record_usage(business.id, "aiEnhancementsPerMonth", now=NOW)
    for _ in range(3):
        record_usage(business.id, "reviewsPerMonth", now=NOW)

    analytics = get_subscription_analytics(business.id, now=NOW)
    assert analytics["plan"]["id"] == "FREE"
    assert analytics["usage"]["aiEnhancements"] == {"used": 2, "limit": 5, "percentage": 40}
    assert analytics["usage"]["reviews"] == {"used": 3, "limit": 10, "percentage": 30}


def test_premium_analytics_report_unlimited(business):
    create_subscription(business.id, "PREMIUM", now=NOW)
    confirm_payment(business.id, now=NOW)
    record_usage(business.id, "aiEnhancementsPerMonth", now=NOW)

    usage = get_subscription_analytics(business.id, now=NOW)["usage"]
    assert usage["aiEnhancements"] == {"used": 1, "limit": "unlimited", "percentage": 0}
