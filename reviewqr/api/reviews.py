"""
Review routes.

- POST /api/reviews/public: Customer submits a review from the QR form (no auth)
- GET  /api/reviews: Owner's reviews
- GET  /api/reviews/{id}: One review with its current AI generation
- POST /api/reviews/{id}/publish: APPROVED -> PUBLISHED
- GET  /api/reviews/business/{businessId}/analytics: Rating/status statistics
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from reviewqr.api.deps import get_current_business
from reviewqr.core.auth import get_current_user_id
from reviewqr.features.analytics.service import get_review_analytics
from reviewqr.features.businesses.service import get_owned_business
from reviewqr.features.reviews.service import (
    count_reviews,
    get_current_generation,
    get_owned_review,
    list_reviews,
    publish_review,
    submit_review,
)
from reviewqr.models.business import Business
from reviewqr.models.review import ReviewStatus, ReviewSubmission

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.post("/public", status_code=201)
def submit_public_review(body: ReviewSubmission):
    review = submit_review(
        body.businessId,
        body.customerId,
        body.rating,
        body.feedback,
        body.formData,
    )
    return {"data": review.model_dump(mode="json"), "message": "Review submitted successfully"}


@router.get("")
def list_business_reviews(
    status: Optional[ReviewStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    business: Business = Depends(get_current_business),
):
    items = list_reviews(business.id, status=status, limit=limit, offset=offset)
    return {
        "data": [review.model_dump(mode="json") for review in items],
        "count": len(items),
        "total": count_reviews(business.id),
    }


@router.get("/business/{business_id}/analytics")
def review_analytics(business_id: str, owner_id: str = Depends(get_current_user_id)):
    get_owned_business(business_id, owner_id)
    return {"data": get_review_analytics(business_id)}


@router.get("/{review_id}")
def get_review_endpoint(review_id: str, owner_id: str = Depends(get_current_user_id)):
    review = get_owned_review(review_id, owner_id)
    generation = get_current_generation(review_id)
    return {
        "data": {
            **review.model_dump(mode="json"),
            "aiGeneration": generation.model_dump(mode="json") if generation else None,
        }
    }


@router.post("/{review_id}/publish")
def publish_review_endpoint(review_id: str, owner_id: str = Depends(get_current_user_id)):
    review = publish_review(review_id, owner_id)
    return {"data": review.model_dump(mode="json")}
