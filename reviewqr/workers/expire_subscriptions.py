"""Expiry sweep: subscriptions whose period ended become EXPIRED."""
from datetime import datetime
import logging

from sqlalchemy import func, select

from reviewqr.core.clock import normalize_now
from reviewqr.core.database import get_db_session, subscriptions
from reviewqr.features.subscriptions.service import expire_subscriptions
from reviewqr.models.subscription import SubscriptionStatus

logger = logging.getLogger("reviewqr.workers.expire_subscriptions")


def run_expiry_sweep(*, now: datetime | None = None, dry_run: bool = False) -> dict:
    current = normalize_now(now)

    with get_db_session() as session:
        candidates = session.execute(
            select(func.count())
            .select_from(subscriptions)
            .where(subscriptions.c.status.in_([
                SubscriptionStatus.ACTIVE.value,
                SubscriptionStatus.CANCELLED.value,
            ]))
            .where(subscriptions.c.end_date < current)
        ).scalar() or 0

    expired = 0
    if not dry_run and candidates:
        expired = expire_subscriptions(current)

    logger.info(
        "[expiry] subscription sweep",
        extra={"dry_run": dry_run, "candidates": candidates, "expired": expired},
    )
    return {"dry_run": dry_run, "candidates": candidates, "expired": expired, "ran_at": current.isoformat()}


if __name__ == "__main__":
    from reviewqr.core.config import settings
    from reviewqr.core.logging import configure_logging

    configure_logging(settings.ENV)
    result = run_expiry_sweep()
    print(result)
