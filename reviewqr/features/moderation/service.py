"""
reviewqr/features/moderation/service.py

Platform-operator moderation of reviews.

Handles:
- Single and bulk APPROVE / REJECT / FLAG / DELETE with a moderation stamp
- The moderation queue (flagged reviews first, oldest first)
- Business exports for operators

DELETE is a tombstone: the row stays, `deleted_at` is set once and later
deletes are no-ops apart from the moderation stamp. Exports include
tombstoned reviews.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from reviewqr.core.clock import normalize_now
from reviewqr.core.database import get_db_session, reviews
from reviewqr.core.errors import NotFoundError, PersistenceError, ValidationError
from reviewqr.core.logging import log_event
from reviewqr.features.businesses.service import get_business
from reviewqr.features.reviews.service import (
    get_review,
    list_ai_generations,
    list_generation_history,
    list_reviews,
    row_to_review,
)
from reviewqr.models.review import ModerationAction, Review, ReviewStatus


logger = logging.getLogger(__name__)

MAX_BULK_REVIEWS = 100


def _action_values(action: ModerationAction, now: datetime) -> Dict[str, Any]:
    if action == ModerationAction.APPROVE:
        return {"status": ReviewStatus.APPROVED.value}
    if action == ModerationAction.REJECT:
        return {"status": ReviewStatus.REJECTED.value}
    if action == ModerationAction.FLAG:
        return {"is_flagged": True}
    # DELETE keeps the first tombstone time
    return {"deleted_at": func.coalesce(reviews.c.deleted_at, now)}


def _parse_action(action: Union[ModerationAction, str]) -> ModerationAction:
    try:
        return ModerationAction(str(getattr(action, "value", action)).upper())
    except ValueError:
        raise ValidationError(
            "Invalid moderation action",
            errors=[f"action: must be one of {', '.join(a.value for a in ModerationAction)}"],
        ) from None


def _stamped_values(action: ModerationAction, actor: str, notes: Optional[str], now: datetime) -> Dict[str, Any]:
    values = _action_values(action, now)
    values.update(
        moderated_by=actor,
        moderated_at=now,
        moderator_notes=notes,
        updated_at=now,
    )
    return values


def moderate_review(
    review_id: str,
    action: Union[ModerationAction, str],
    actor: str,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Review:
    """
    Apply a moderation action and stamp moderated_by / moderated_at / moderator_notes.

    Raises:
        ValidationError: unknown action
        NotFoundError: no such review (tombstoned reviews can still be moderated)
    """
    action = _parse_action(action)
    current = normalize_now(now)
    values = _stamped_values(action, actor, notes, current)
    try:
        with get_db_session() as session:
            result = session.execute(
                update(reviews).where(reviews.c.id == review_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Review {review_id} not found")
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to moderate review: {exc}") from exc

    review = get_review(review_id, include_deleted=True)
    log_event(
        "info",
        "review.moderated",
        business_id=review.business_id,
        review_id=review_id,
        event_type="moderation",
        extra={"action": action.value, "actor": actor},
    )
    return review


def get_review_for_moderation(review_id: str) -> Dict[str, Any]:
    """Review (tombstoned included) with its generation history."""
    review = get_review(review_id, include_deleted=True)
    return {
        "review": review.model_dump(mode="json"),
        "generations": [g.model_dump(mode="json") for g in list_generation_history(review_id)],
    }


def list_moderation_queue(
    *,
    flagged_only: bool = False,
    status: Optional[ReviewStatus] = None,
    business_id: Optional[str] = None,
    include_deleted: bool = False,
    limit: Optional[int] = 50,
    offset: int = 0,
) -> List[Review]:
    """
    Reviews awaiting an operator: flagged ones first, then oldest first.

    Tombstoned reviews are left out unless `include_deleted`.
    """
    query = select(reviews)
    if flagged_only:
        query = query.where(reviews.c.is_flagged.is_(True))
    if status is not None:
        query = query.where(reviews.c.status == ReviewStatus(status).value)
    if business_id is not None:
        query = query.where(reviews.c.business_id == business_id)
    if not include_deleted:
        query = query.where(reviews.c.deleted_at.is_(None))
    query = (
        query.order_by(reviews.c.is_flagged.desc(), reviews.c.created_at, reviews.c.id)
        .limit(limit)
        .offset(offset)
    )
    with get_db_session() as session:
        rows = session.execute(query).all()
    return [row_to_review(row) for row in rows]


def bulk_moderate(
    review_ids: Iterable[str],
    action: Union[ModerationAction, str],
    actor: str,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Apply one action to many reviews in a single transaction.

    Unknown ids are reported under `missing` and do not fail the batch.

    Raises:
        ValidationError: unknown action, empty batch or more than MAX_BULK_REVIEWS ids
    """
    action = _parse_action(action)
    ids = list(dict.fromkeys(review_id for review_id in review_ids if review_id))
    if not ids:
        raise ValidationError("No reviews to moderate", errors=["reviewIds: must not be empty"])
    if len(ids) > MAX_BULK_REVIEWS:
        raise ValidationError(
            "Too many reviews in one batch",
            errors=[f"reviewIds: at most {MAX_BULK_REVIEWS} per request"],
        )

    current = normalize_now(now)
    values = _stamped_values(action, actor, notes, current)
    try:
        with get_db_session() as session:
            session.execute(update(reviews).where(reviews.c.id.in_(ids)).values(**values))
            found = set(
                session.execute(select(reviews.c.id).where(reviews.c.id.in_(ids))).scalars()
            )
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to moderate reviews: {exc}") from exc

    moderated = [review_id for review_id in ids if review_id in found]
    missing = [review_id for review_id in ids if review_id not in found]
    log_event(
        "info",
        "review.bulk_moderated",
        event_type="moderation",
        extra={"action": action.value, "actor": actor, "moderated": len(moderated), "missing": len(missing)},
    )
    return {"action": action.value, "moderated": moderated, "missing": missing}


def export_business_reviews(business_id: str) -> Dict[str, Any]:
    """Every review of a business, tombstoned ones included and marked `is_deleted`."""
    business = get_business(business_id)
    all_reviews = list_reviews(business_id, include_deleted=True, limit=None)
    generations = list_ai_generations(business_id, include_deleted=True)
    logger.info(
        "[moderation] export",
        extra={"business_id": business_id, "review_count": len(all_reviews)},
    )
    return {
        "business": business.model_dump(mode="json"),
        "reviews": [review.model_dump(mode="json") for review in all_reviews],
        "aiGenerations": [generation.model_dump(mode="json") for generation in generations],
        "totalReviews": len(all_reviews),
        "deletedReviews": sum(1 for review in all_reviews if review.is_deleted),
    }
