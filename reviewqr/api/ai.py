"""
AI enhancement routes.

Owner routes resolve the review's business and check ownership; quota is
enforced inside the review pipeline (403 with upgrade guidance).
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from reviewqr.core.auth import get_current_user_id
from reviewqr.features.ai.prompts import style_params
from reviewqr.features.ai.service import OPERATION_PREVIEW, get_ai_analytics, get_enhancer
from reviewqr.features.ai.strategies import EnhancementContext
from reviewqr.features.businesses.service import get_owned_business
from reviewqr.features.reviews.service import (
    approve_review,
    enhance_review,
    get_current_generation,
    get_review,
    list_reviews,
    regenerate_review,
    reject_review,
)
from reviewqr.models.review import ReviewStatus

router = APIRouter(prefix="/api/ai", tags=["ai"])

Style = Literal[
    "default", "rewrite", "detailed", "concise", "creative", "creative_rewrite", "professional_rewrite"
]


class StyleOptions(BaseModel):
    style: Style = "default"
    tone: Optional[str] = None
    variationLevel: Optional[str] = None
    uniqueApproach: Optional[str] = None
    rewriteIteration: Optional[int] = None

    def to_params(self) -> Dict[str, Any]:
        return style_params(self.model_dump(exclude_none=True))


class EnhanceTextRequest(StyleOptions):
    originalText: str = Field(..., min_length=5)
    businessContext: Dict[str, Any] = Field(default_factory=dict)


class EnhanceReviewRequest(StyleOptions):
    reviewId: str


class RejectRequest(BaseModel):
    rejectionNote: Optional[str] = None


def _review_payload(review_id: str) -> Dict[str, Any]:
    review = get_review(review_id)
    generation = get_current_generation(review_id)
    return {
        "review": review.model_dump(mode="json"),
        "aiGeneration": generation.model_dump(mode="json") if generation else None,
    }


@router.post("/enhance-text")
def enhance_text(body: EnhanceTextRequest):
    """Public preview for the review form; does not touch any review or quota."""
    context_in = body.businessContext
    context = EnhancementContext(
        business={
            "name": context_in.get("businessName") or context_in.get("name"),
            "business_type": context_in.get("businessType"),
            "industry": context_in.get("industry"),
        },
        params=body.to_params(),
        business_id=context_in.get("businessId"),
    )
    result = get_enhancer().enhance(body.originalText, context, operation=OPERATION_PREVIEW)
    return {
        "data": {
            "originalText": body.originalText,
            "improvedText": result.improved_text,
            "enhancedText": result.enhanced_text,
            "confidence": result.confidence,
            "sentiment": result.sentiment,
            "keywords": result.keywords,
            "strategy": result.strategy,
        }
    }


@router.post("/enhance-review", status_code=201)
def enhance_review_endpoint(body: EnhanceReviewRequest, owner_id: str = Depends(get_current_user_id)):
    generation = enhance_review(body.reviewId, owner_id, params=body.to_params())
    return {"data": {**_review_payload(body.reviewId), "aiGeneration": generation.model_dump(mode="json")}}


@router.post("/approve-review/{review_id}")
def approve_review_endpoint(review_id: str, owner_id: str = Depends(get_current_user_id)):
    approve_review(review_id, approved_by=owner_id, owner_id=owner_id)
    return {"data": _review_payload(review_id)}


@router.post("/reject-review/{review_id}")
def reject_review_endpoint(
    review_id: str,
    body: Optional[RejectRequest] = None,
    owner_id: str = Depends(get_current_user_id),
):
    note = body.rejectionNote if body else None
    reject_review(review_id, note, owner_id=owner_id)
    return {"data": _review_payload(review_id)}


@router.post("/regenerate-review/{review_id}", status_code=201)
def regenerate_review_endpoint(
    review_id: str,
    body: Optional[StyleOptions] = None,
    owner_id: str = Depends(get_current_user_id),
):
    params = body.to_params() if body else None
    generation = regenerate_review(review_id, owner_id, params=params)
    return {"data": {**_review_payload(review_id), "aiGeneration": generation.model_dump(mode="json")}}


@router.get("/reviews/{business_id}")
def list_ai_reviews(
    business_id: str,
    status: Optional[ReviewStatus] = Query(None),
    owner_id: str = Depends(get_current_user_id),
):
    """Reviews of a business with their current AI generation."""
    get_owned_business(business_id, owner_id)
    items = []
    for review in list_reviews(business_id, status=status, limit=None):
        generation = get_current_generation(review.id)
        items.append({
            "review": review.model_dump(mode="json"),
            "aiGeneration": generation.model_dump(mode="json") if generation else None,
        })
    return {"data": items, "count": len(items)}


@router.get("/analytics/{business_id}")
def ai_analytics(
    business_id: str,
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    owner_id: str = Depends(get_current_user_id),
):
    get_owned_business(business_id, owner_id)
    return {"data": get_ai_analytics(business_id, startDate, endDate)}
