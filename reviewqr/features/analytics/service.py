"""Review statistics for a business dashboard (tombstoned reviews excluded)."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, select

from reviewqr.core.clock import normalize_now
from reviewqr.core.database import get_db_session, reviews

RECENT_WINDOW_DAYS = 30


def get_review_analytics(business_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    live = (reviews.c.business_id == business_id) & reviews.c.deleted_at.is_(None)
    since = normalize_now(now) - timedelta(days=RECENT_WINDOW_DAYS)

    with get_db_session() as session:
        total, average = session.execute(
            select(func.count(reviews.c.id), func.avg(reviews.c.rating)).where(live)
        ).one()
        by_rating = session.execute(
            select(reviews.c.rating, func.count(reviews.c.id)).where(live).group_by(reviews.c.rating)
        ).all()
        by_status = session.execute(
            select(reviews.c.status, func.count(reviews.c.id)).where(live).group_by(reviews.c.status)
        ).all()
        recent = session.execute(
            select(func.count(reviews.c.id)).where(live).where(reviews.c.created_at >= since)
        ).scalar()
        flagged = session.execute(
            select(func.count(reviews.c.id)).where(live).where(reviews.c.is_flagged.is_(True))
        ).scalar()

    rating_distribution = {str(stars): 0 for stars in range(1, 6)}
    rating_distribution.update({str(rating): count for rating, count in by_rating})

    return {
        "totalReviews": int(total or 0),
        "averageRating": round(float(average), 2) if average is not None else 0.0,
        "ratingDistribution": rating_distribution,
        "statusDistribution": {status: count for status, count in by_status},
        "recentReviews": int(recent or 0),
        "flaggedReviews": int(flagged or 0),
    }
