"""
Super-admin routes (platform operators).

All routes require X-Admin-Key or a super-admin bearer token. Moderation
reads include tombstoned reviews. Payment confirmation lives here because
it follows the payment processor's signal, never the owner's own request.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from reviewqr.core.admin_auth import AdminActor, require_super_admin
from reviewqr.features.moderation.service import (
    bulk_moderate,
    export_business_reviews,
    get_review_for_moderation,
    list_moderation_queue,
    moderate_review,
)
from reviewqr.features.subscriptions.service import confirm_payment, expire_subscriptions
from reviewqr.models.review import ReviewStatus

router = APIRouter(prefix="/api/super-admin", tags=["super-admin"])


class ModerateRequest(BaseModel):
    action: str
    notes: Optional[str] = None


class BulkModerateRequest(BaseModel):
    reviewIds: List[str]
    action: str
    notes: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    paymentReference: Optional[str] = None


@router.get("/moderation/queue")
def moderation_queue(
    flagged: bool = Query(False, description="Only flagged reviews"),
    status: Optional[ReviewStatus] = Query(None),
    businessId: Optional[str] = Query(None),
    includeDeleted: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: AdminActor = Depends(require_super_admin),
):
    items = list_moderation_queue(
        flagged_only=flagged,
        status=status,
        business_id=businessId,
        include_deleted=includeDeleted,
        limit=limit,
        offset=offset,
    )
    return {"data": [review.model_dump(mode="json") for review in items], "count": len(items)}


@router.post("/moderation/bulk")
def moderation_bulk(body: BulkModerateRequest, actor: AdminActor = Depends(require_super_admin)):
    result = bulk_moderate(body.reviewIds, body.action, actor.actor_id, body.notes)
    return {"data": result, "message": f"{len(result['moderated'])} reviews moderated"}


@router.put("/reviews/{review_id}/moderate")
def moderate_review_endpoint(
    review_id: str,
    body: ModerateRequest,
    actor: AdminActor = Depends(require_super_admin),
):
    review = moderate_review(review_id, body.action, actor.actor_id, body.notes)
    return {"data": review.model_dump(mode="json"), "message": f"Review {body.action.lower()} applied"}


@router.get("/reviews/{review_id}")
def get_review_admin(review_id: str, actor: AdminActor = Depends(require_super_admin)):
    return {"data": get_review_for_moderation(review_id)}


@router.get("/businesses/{business_id}/export")
def export_business(business_id: str, actor: AdminActor = Depends(require_super_admin)):
    return {"data": export_business_reviews(business_id)}


@router.post("/subscriptions/{business_id}/confirm")
def confirm_subscription_payment(
    business_id: str,
    body: Optional[ConfirmPaymentRequest] = None,
    actor: AdminActor = Depends(require_super_admin),
):
    """PENDING -> ACTIVE once the processor reports the payment."""
    subscription = confirm_payment(business_id, body.paymentReference if body else None)
    return {"data": subscription.model_dump(mode="json")}


@router.post("/subscriptions/expire")
def expire_now(
    now: Optional[datetime] = Query(None, description="Fixed timestamp for deterministic runs"),
    actor: AdminActor = Depends(require_super_admin),
):
    return {"data": {"expired": expire_subscriptions(now)}}
