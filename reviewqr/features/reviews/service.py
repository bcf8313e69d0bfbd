"""
reviewqr/features/reviews/service.py

Review intake pipeline.

State machine:
    PENDING -> AI_GENERATED -> APPROVED -> PUBLISHED
    AI_GENERATED -> (reject) -> PENDING
    moderation may set APPROVED / REJECTED at any time

Every transition is a guarded UPDATE (`WHERE status IN ...`); a transition
that matches no row was raced or is invalid and raises ConflictError.
Enhancement persists the generation, the review update and the usage
increment in one transaction, so a failed enhancement never consumes quota.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import case, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reviewqr.core.clock import ensure_utc, normalize_now
from reviewqr.core.database import ai_generations, get_db_session, reviews
from reviewqr.core.errors import (
    AlreadyEnhancedError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from reviewqr.features.ai.service import AIEnhancer, EnhancementResult, get_enhancer
from reviewqr.features.ai.prompts import style_params
from reviewqr.features.ai.strategies import EnhancementContext
from reviewqr.features.ai.validators import validate_review_text
from reviewqr.features.businesses.service import get_business, get_customer, get_owned_business
from reviewqr.features.entitlements.service import require_feature
from reviewqr.features.form_templates.service import find_active_form_template, validate_form_data
from reviewqr.features.plans.service import PlanCatalog
from reviewqr.features.usage.service import record_usage
from reviewqr.models.business import Business
from reviewqr.models.plan import FeatureKey
from reviewqr.models.review import AIGeneration, GenerationStatus, Review, ReviewStatus


logger = logging.getLogger(__name__)

ENHANCEABLE_STATUSES = (ReviewStatus.PENDING, ReviewStatus.REJECTED)
REGENERABLE_STATUSES = (ReviewStatus.AI_GENERATED, ReviewStatus.PENDING, ReviewStatus.REJECTED)
LIVE_GENERATION_STATUSES = (GenerationStatus.PENDING, GenerationStatus.APPROVED)

MIN_RATING = 1
MAX_RATING = 5


def _values(statuses: Iterable) -> List[str]:
    return [status.value for status in statuses]


def row_to_review(row) -> Review:
    return Review(
        id=row.id,
        business_id=row.business_id,
        customer_id=row.customer_id,
        rating=row.rating,
        feedback=row.feedback,
        generated_review=row.generated_review,
        status=ReviewStatus(row.status),
        form_data=row.form_data,
        is_flagged=bool(row.is_flagged),
        moderated_by=row.moderated_by,
        moderated_at=ensure_utc(row.moderated_at) if row.moderated_at else None,
        moderator_notes=row.moderator_notes,
        deleted_at=ensure_utc(row.deleted_at) if row.deleted_at else None,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _row_to_generation(row) -> AIGeneration:
    return AIGeneration(
        id=row.id,
        review_id=row.review_id,
        original_text=row.original_text,
        enhanced_text=row.enhanced_text,
        confidence=row.confidence,
        sentiment=row.sentiment,
        keywords=list(row.keywords or []),
        strategy=row.strategy,
        status=GenerationStatus(row.status),
        rejection_note=row.rejection_note,
        approved_by=row.approved_by,
        approved_at=ensure_utc(row.approved_at) if row.approved_at else None,
        generated_at=ensure_utc(row.generated_at),
        superseded_at=ensure_utc(row.superseded_at) if row.superseded_at else None,
    )


def _parse_rating(rating: Any) -> Optional[int]:
    if isinstance(rating, bool):
        return None
    if isinstance(rating, int):
        value = rating
    elif isinstance(rating, float) and rating.is_integer():
        value = int(rating)
    elif isinstance(rating, str) and rating.strip().isdigit():
        value = int(rating.strip())
    else:
        return None
    return value if MIN_RATING <= value <= MAX_RATING else None


def _fetch_review_row(session: Session, review_id: str, include_deleted: bool = False):
    query = select(reviews).where(reviews.c.id == review_id)
    if not include_deleted:
        query = query.where(reviews.c.deleted_at.is_(None))
    return session.execute(query).first()


def _raise_transition_failed(session: Session, review_id: str, action: str) -> None:
    row = _fetch_review_row(session, review_id)
    if row is None:
        raise NotFoundError(f"Review {review_id} not found")
    raise ConflictError(f"Cannot {action} a review in status {row.status}")


def _business_context(business: Business) -> Dict[str, Any]:
    return {
        "name": business.name,
        "business_type": business.business_type,
        "industry": business.industry,
    }


def get_review(review_id: str, *, include_deleted: bool = False) -> Review:
    """Raises NotFoundError (tombstoned reviews count as missing unless include_deleted)."""
    with get_db_session() as session:
        row = _fetch_review_row(session, review_id, include_deleted)
    if row is None:
        raise NotFoundError(f"Review {review_id} not found")
    return row_to_review(row)


def get_owned_review(review_id: str, owner_id: Optional[str]) -> Review:
    review = get_review(review_id)
    if owner_id is not None:
        get_owned_business(review.business_id, owner_id)
    return review


def list_reviews(
    business_id: str,
    *,
    status: Optional[ReviewStatus] = None,
    include_deleted: bool = False,
    limit: Optional[int] = 50,
    offset: int = 0,
) -> List[Review]:
    query = select(reviews).where(reviews.c.business_id == business_id)
    if status is not None:
        query = query.where(reviews.c.status == ReviewStatus(status).value)
    if not include_deleted:
        query = query.where(reviews.c.deleted_at.is_(None))
    query = query.order_by(reviews.c.created_at.desc(), reviews.c.id).limit(limit).offset(offset)
    with get_db_session() as session:
        rows = session.execute(query).all()
    return [row_to_review(row) for row in rows]


def count_reviews(business_id: str, *, include_deleted: bool = False) -> int:
    query = select(func.count()).select_from(reviews).where(reviews.c.business_id == business_id)
    if not include_deleted:
        query = query.where(reviews.c.deleted_at.is_(None))
    with get_db_session() as session:
        return int(session.execute(query).scalar() or 0)


def get_current_generation(review_id: str) -> Optional[AIGeneration]:
    with get_db_session() as session:
        row = session.execute(
            select(ai_generations)
            .where(ai_generations.c.review_id == review_id)
            .where(ai_generations.c.superseded_at.is_(None))
        ).first()
    return _row_to_generation(row) if row else None


def list_generation_history(review_id: str) -> List[AIGeneration]:
    """All generations for a review, oldest first (superseded ones included)."""
    with get_db_session() as session:
        rows = session.execute(
            select(ai_generations)
            .where(ai_generations.c.review_id == review_id)
            .order_by(ai_generations.c.generated_at, ai_generations.c.id)
        ).all()
    return [_row_to_generation(row) for row in rows]


def list_ai_generations(
    business_id: str,
    *,
    status: Optional[GenerationStatus] = None,
    include_superseded: bool = False,
    include_deleted: bool = False,
) -> List[AIGeneration]:
    """Generations for a business's reviews, newest first."""
    query = (
        select(ai_generations)
        .join(reviews, reviews.c.id == ai_generations.c.review_id)
        .where(reviews.c.business_id == business_id)
    )
    if not include_deleted:
        query = query.where(reviews.c.deleted_at.is_(None))
    if status is not None:
        query = query.where(ai_generations.c.status == GenerationStatus(status).value)
    if not include_superseded:
        query = query.where(ai_generations.c.superseded_at.is_(None))
    query = query.order_by(ai_generations.c.generated_at.desc())
    with get_db_session() as session:
        rows = session.execute(query).all()
    return [_row_to_generation(row) for row in rows]


def submit_review(
    business_id: str,
    customer_id: str,
    rating: Any,
    feedback: Optional[str],
    form_data: Optional[Dict[str, Any]] = None,
    *,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> Review:
    """
    Accept a review from the public form.

    Raises:
        ValidationError: bad rating/feedback/formData (itemized), or customer not of this business
        NotFoundError: unknown business or customer
        EntitlementDeniedError: monthly review cap reached
    """
    errors = []
    rating_value = _parse_rating(rating)
    if rating_value is None:
        errors.append(f"rating: must be an integer between {MIN_RATING} and {MAX_RATING}")
    feedback_text = (feedback or "").strip()
    errors.extend(f"feedback: {message}" for message in validate_review_text(feedback_text))
    errors.extend(validate_form_data(find_active_form_template(business_id), form_data))
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    get_business(business_id)
    customer = get_customer(customer_id)
    if customer.business_id != business_id:
        raise ValidationError(
            "Customer does not belong to this business",
            errors=["customerId: not a customer of this business"],
        )

    require_feature(business_id, FeatureKey.REVIEWS_PER_MONTH, catalog=catalog, now=now)

    current = normalize_now(now)
    review_id = str(uuid4())
    try:
        with get_db_session() as session:
            session.execute(
                insert(reviews).values(
                    id=review_id,
                    business_id=business_id,
                    customer_id=customer_id,
                    rating=rating_value,
                    feedback=feedback_text,
                    status=ReviewStatus.PENDING.value,
                    form_data=form_data,
                    is_flagged=False,
                    created_at=current,
                    updated_at=current,
                )
            )
            record_usage(
                business_id,
                FeatureKey.REVIEWS_PER_MONTH.value,
                {"reviewId": review_id},
                now=current,
                session=session,
            )
            row = _fetch_review_row(session, review_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to store review: {exc}") from exc

    logger.info("[reviews] submitted", extra={"business_id": business_id, "review_id": review_id})
    return row_to_review(row)


def _persist_generation(
    review: Review,
    result: EnhancementResult,
    *,
    expected_statuses: Iterable[ReviewStatus],
    superseded_status: Optional[GenerationStatus],
    action: str,
    now: datetime,
) -> AIGeneration:
    generation_id = str(uuid4())
    try:
        with get_db_session() as session:
            moved = session.execute(
                update(reviews)
                .where(reviews.c.id == review.id)
                .where(reviews.c.deleted_at.is_(None))
                .where(reviews.c.status.in_(_values(expected_statuses)))
                .values(
                    generated_review=result.enhanced_text,
                    status=ReviewStatus.AI_GENERATED.value,
                    updated_at=now,
                )
            )
            if moved.rowcount == 0:
                _raise_transition_failed(session, review.id, action)

            superseded_values: Dict[str, Any] = {"superseded_at": now}
            if superseded_status is not None:
                superseded_values["status"] = case(
                    (ai_generations.c.status == GenerationStatus.PENDING.value, superseded_status.value),
                    else_=ai_generations.c.status,
                )
            session.execute(
                update(ai_generations)
                .where(ai_generations.c.review_id == review.id)
                .where(ai_generations.c.superseded_at.is_(None))
                .values(**superseded_values)
            )
            session.execute(
                insert(ai_generations).values(
                    id=generation_id,
                    review_id=review.id,
                    original_text=review.feedback,
                    enhanced_text=result.enhanced_text,
                    confidence=result.confidence,
                    sentiment=result.sentiment,
                    keywords=list(result.keywords),
                    strategy=result.strategy,
                    status=GenerationStatus.PENDING.value,
                    generated_at=now,
                )
            )
            record_usage(
                review.business_id,
                FeatureKey.AI_ENHANCEMENTS_PER_MONTH.value,
                {"reviewId": review.id, "strategy": result.strategy, "action": action},
                now=now,
                session=session,
            )
            row = session.execute(
                select(ai_generations).where(ai_generations.c.id == generation_id)
            ).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to store AI generation: {exc}") from exc
    return _row_to_generation(row)


def enhance_review(
    review_id: str,
    owner_id: Optional[str] = None,
    *,
    params: Optional[Dict[str, Any]] = None,
    enhancer: Optional[AIEnhancer] = None,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> AIGeneration:
    """
    Produce the first (or post-rejection) AI version of a review.

    Raises:
        NotFoundError / PermissionError: review missing or not owned
        AlreadyEnhancedError: review already has a live generation
        EntitlementDeniedError: monthly AI enhancement cap reached
        InvalidContentError: stored feedback fails the quality rules
        ConflictError: the review changed state while the model was running
    """
    review = get_owned_review(review_id, owner_id)
    current_generation = get_current_generation(review_id)
    if review.status not in ENHANCEABLE_STATUSES or (
        current_generation is not None and current_generation.status in LIVE_GENERATION_STATUSES
    ):
        raise AlreadyEnhancedError(
            "Review has already been enhanced",
            details={"status": review.status.value},
        )

    require_feature(review.business_id, FeatureKey.AI_ENHANCEMENTS_PER_MONTH, catalog=catalog, now=now)

    business = get_business(review.business_id)
    context = EnhancementContext(
        business=_business_context(business),
        params=style_params(params),
        business_id=review.business_id,
        review_id=review.id,
    )
    result = (enhancer or get_enhancer()).enhance(review.feedback, context)

    generation = _persist_generation(
        review,
        result,
        expected_statuses=ENHANCEABLE_STATUSES,
        superseded_status=None,
        action="enhance",
        now=normalize_now(now),
    )
    logger.info(
        "[reviews] enhanced",
        extra={"review_id": review_id, "business_id": review.business_id, "strategy": result.strategy},
    )
    return generation


def regenerate_review(
    review_id: str,
    owner_id: Optional[str] = None,
    *,
    params: Optional[Dict[str, Any]] = None,
    enhancer: Optional[AIEnhancer] = None,
    catalog: Optional[PlanCatalog] = None,
    now: Optional[datetime] = None,
) -> AIGeneration:
    """
    Replace the current, not-yet-approved generation with a new one.

    Consumes one AI enhancement unit, like enhance_review.

    Raises:
        ConflictError: no current generation, or it is already approved
    """
    review = get_owned_review(review_id, owner_id)
    current_generation = get_current_generation(review_id)
    if current_generation is None or current_generation.status == GenerationStatus.APPROVED:
        raise ConflictError("No regenerable AI generation for this review")
    if review.status not in REGENERABLE_STATUSES:
        raise ConflictError(f"Cannot regenerate a review in status {review.status.value}")

    require_feature(review.business_id, FeatureKey.AI_ENHANCEMENTS_PER_MONTH, catalog=catalog, now=now)

    business = get_business(review.business_id)
    merged = dict(params or {})
    merged.setdefault("variation_id", len(list_generation_history(review_id)) + 1)
    context = EnhancementContext(
        business=_business_context(business),
        params=style_params(merged),
        business_id=review.business_id,
        review_id=review.id,
    )
    result = (enhancer or get_enhancer()).enhance(review.feedback, context)

    generation = _persist_generation(
        review,
        result,
        expected_statuses=REGENERABLE_STATUSES,
        superseded_status=GenerationStatus.REGENERATED,
        action="regenerate",
        now=normalize_now(now),
    )
    logger.info("[reviews] regenerated", extra={"review_id": review_id, "strategy": result.strategy})
    return generation


def approve_review(
    review_id: str,
    approved_by: str,
    owner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Review:
    """AI_GENERATED -> APPROVED; the current generation is stamped with approver and time."""
    get_owned_review(review_id, owner_id)
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            moved = session.execute(
                update(reviews)
                .where(reviews.c.id == review_id)
                .where(reviews.c.deleted_at.is_(None))
                .where(reviews.c.status == ReviewStatus.AI_GENERATED.value)
                .values(status=ReviewStatus.APPROVED.value, updated_at=current)
            )
            if moved.rowcount == 0:
                _raise_transition_failed(session, review_id, "approve")
            session.execute(
                update(ai_generations)
                .where(ai_generations.c.review_id == review_id)
                .where(ai_generations.c.superseded_at.is_(None))
                .values(
                    status=GenerationStatus.APPROVED.value,
                    approved_by=approved_by,
                    approved_at=current,
                )
            )
            row = _fetch_review_row(session, review_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to approve review: {exc}") from exc

    logger.info("[reviews] approved", extra={"review_id": review_id, "approved_by": approved_by})
    return row_to_review(row)


def reject_review(
    review_id: str,
    rejection_note: Optional[str] = None,
    owner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Review:
    """
    AI_GENERATED -> PENDING.

    The generated text is cleared and the generation marked REJECTED with the
    note. The customer's feedback is left as submitted, so the review can be
    enhanced again.
    """
    get_owned_review(review_id, owner_id)
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            moved = session.execute(
                update(reviews)
                .where(reviews.c.id == review_id)
                .where(reviews.c.deleted_at.is_(None))
                .where(reviews.c.status == ReviewStatus.AI_GENERATED.value)
                .values(
                    status=ReviewStatus.PENDING.value,
                    generated_review=None,
                    updated_at=current,
                )
            )
            if moved.rowcount == 0:
                _raise_transition_failed(session, review_id, "reject")
            session.execute(
                update(ai_generations)
                .where(ai_generations.c.review_id == review_id)
                .where(ai_generations.c.superseded_at.is_(None))
                .values(status=GenerationStatus.REJECTED.value, rejection_note=rejection_note)
            )
            row = _fetch_review_row(session, review_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to reject review: {exc}") from exc

    logger.info("[reviews] rejected", extra={"review_id": review_id})
    return row_to_review(row)


def publish_review(
    review_id: str,
    owner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Review:
    """APPROVED -> PUBLISHED."""
    get_owned_review(review_id, owner_id)
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            moved = session.execute(
                update(reviews)
                .where(reviews.c.id == review_id)
                .where(reviews.c.deleted_at.is_(None))
                .where(reviews.c.status == ReviewStatus.APPROVED.value)
                .values(status=ReviewStatus.PUBLISHED.value, updated_at=current)
            )
            if moved.rowcount == 0:
                _raise_transition_failed(session, review_id, "publish")
            row = _fetch_review_row(session, review_id)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to publish review: {exc}") from exc

    logger.info("[reviews] published", extra={"review_id": review_id})
    return row_to_review(row)
