"""Tests for super-admin moderation and soft delete."""

from datetime import datetime, timedelta, timezone

import pytest

from reviewqr.core.errors import AlreadyEnhancedError, NotFoundError, ValidationError
from reviewqr.features.analytics.service import get_review_analytics
from reviewqr.features.moderation.service import (
    MAX_BULK_REVIEWS,
    bulk_moderate,
    export_business_reviews,
    get_review_for_moderation,
    list_moderation_queue,
    moderate_review,
)
from reviewqr.features.reviews.service import (
    enhance_review,
    get_review,
    list_reviews,
    regenerate_review,
)
from reviewqr.models.review import ModerationAction, ReviewStatus


ADMIN = "key:abc123"
T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_delete_is_a_tombstone(make_review, business):
    review = make_review()
    deleted = moderate_review(review.id, "DELETE", ADMIN, "spam", now=T0)

    assert deleted.is_deleted is True
    assert deleted.deleted_at == T0
    assert deleted.moderated_by == ADMIN
    assert deleted.moderator_notes == "spam"

    with pytest.raises(NotFoundError):
        get_review(review.id)
    assert list_reviews(business.id) == []
    assert get_review_analytics(business.id)["totalReviews"] == 0
    # Still there for operators
    assert get_review(review.id, include_deleted=True).id == review.id


def test_delete_is_idempotent(make_review):
    review = make_review()
    moderate_review(review.id, ModerationAction.DELETE, ADMIN, now=T0)
    again = moderate_review(review.id, ModerationAction.DELETE, "key:other", now=T0 + timedelta(hours=1))

    assert again.deleted_at == T0
    assert again.moderated_by == "key:other"
    assert again.moderated_at == T0 + timedelta(hours=1)


def test_deleted_review_cannot_be_enhanced(make_review, owner_id):
    review = make_review()
    moderate_review(review.id, "DELETE", ADMIN)
    with pytest.raises(NotFoundError):
        enhance_review(review.id, owner_id)


def test_flag(make_review, business):
    review = make_review()
    flagged = moderate_review(review.id, "flag", ADMIN, "check wording")
    assert flagged.is_flagged is True
    assert flagged.status == ReviewStatus.PENDING
    assert get_review_analytics(business.id)["flaggedReviews"] == 1


def test_approve_and_reject_override_status(make_review):
    review = make_review()
    assert moderate_review(review.id, "APPROVE", ADMIN).status == ReviewStatus.APPROVED
    assert moderate_review(review.id, "REJECT", ADMIN).status == ReviewStatus.REJECTED


def test_rejected_by_moderation_can_still_be_regenerated(make_review, owner_id):
    """A moderator REJECT leaves the pending generation live: enhance is refused, regenerate is not."""
    review = make_review()
    enhance_review(review.id, owner_id)
    moderate_review(review.id, "REJECT", ADMIN)

    with pytest.raises(AlreadyEnhancedError):
        enhance_review(review.id, owner_id)

    regenerated = regenerate_review(review.id, owner_id)
    assert get_review(review.id).status == ReviewStatus.AI_GENERATED
    assert get_review(review.id).generated_review == regenerated.enhanced_text


def test_invalid_action(make_review):
    review = make_review()
    with pytest.raises(ValidationError) as exc_info:
        moderate_review(review.id, "BAN", ADMIN)
    assert "action" in exc_info.value.errors[0]


def test_unknown_review():
    with pytest.raises(NotFoundError):
        moderate_review("missing", "FLAG", ADMIN)


def test_review_for_moderation_includes_history(make_review, owner_id):
    review = make_review()
    enhance_review(review.id, owner_id)
    regenerate_review(review.id, owner_id)
    moderate_review(review.id, "DELETE", ADMIN)

    detail = get_review_for_moderation(review.id)
    assert detail["review"]["is_deleted"] is True
    assert len(detail["generations"]) == 2


def test_export_includes_deleted(make_review, business, owner_id):
    kept = make_review()
    gone = make_review(feedback="Service was slow and the room was cold")
    enhance_review(gone.id, owner_id)
    moderate_review(gone.id, "DELETE", ADMIN)

    export = export_business_reviews(business.id)
    assert export["business"]["id"] == business.id
    assert export["totalReviews"] == 2
    assert export["deletedReviews"] == 1
    by_id = {r["id"]: r for r in export["reviews"]}
    assert by_id[kept.id]["is_deleted"] is False
    assert by_id[gone.id]["is_deleted"] is True
    assert len(export["aiGenerations"]) == 1


def test_export_unknown_business():
    with pytest.raises(NotFoundError):
        export_business_reviews("missing")


def test_queue_puts_flagged_reviews_first(make_review, business):
    older = make_review()
    newer = make_review(feedback="Lovely pastries but the queue was long")
    moderate_review(newer.id, "FLAG", ADMIN)

    assert [r.id for r in list_moderation_queue()] == [newer.id, older.id]
    assert [r.id for r in list_moderation_queue(flagged_only=True)] == [newer.id]
    assert [r.id for r in list_moderation_queue(status=ReviewStatus.PENDING, business_id=business.id)] == [
        newer.id,
        older.id,
    ]
    assert list_moderation_queue(business_id="elsewhere") == []


def test_queue_hides_tombstones_unless_asked(make_review):
    review = make_review()
    moderate_review(review.id, "FLAG", ADMIN)
    moderate_review(review.id, "DELETE", ADMIN)

    assert list_moderation_queue(flagged_only=True) == []
    assert [r.id for r in list_moderation_queue(flagged_only=True, include_deleted=True)] == [review.id]


def test_bulk_moderate_applies_one_action(make_review):
    first = make_review()
    second = make_review(feedback="Friendly team and quick service at lunch")

    result = bulk_moderate([first.id, second.id, first.id, "missing"], "reject", ADMIN, "batch", now=T0)

    assert result == {"action": "REJECT", "moderated": [first.id, second.id], "missing": ["missing"]}
    for review_id in (first.id, second.id):
        review = get_review(review_id)
        assert review.status == ReviewStatus.REJECTED
        assert review.moderated_by == ADMIN
        assert review.moderated_at == T0
        assert review.moderator_notes == "batch"


def test_bulk_delete_keeps_first_tombstone(make_review):
    review = make_review()
    moderate_review(review.id, "DELETE", ADMIN, now=T0)
    bulk_moderate([review.id], "DELETE", ADMIN, now=T0 + timedelta(days=1))
    assert get_review(review.id, include_deleted=True).deleted_at == T0


def test_bulk_moderate_rejects_bad_batches(make_review):
    review = make_review()
    with pytest.raises(ValidationError):
        bulk_moderate([], "FLAG", ADMIN)
    with pytest.raises(ValidationError):
        bulk_moderate([review.id], "BAN", ADMIN)
    with pytest.raises(ValidationError):
        bulk_moderate([f"r-{i}" for i in range(MAX_BULK_REVIEWS + 1)], "FLAG", ADMIN)
    assert get_review(review.id).is_flagged is False
