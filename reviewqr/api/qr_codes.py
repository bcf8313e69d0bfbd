"""
QR code routes.

Owner routes are scoped to the caller's business. Scan tracking is public:
the review form calls it when opened through a code.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from reviewqr.api.deps import get_current_business
from reviewqr.core.auth import get_current_user_id
from reviewqr.features.qr_codes.service import (
    create_qr_code,
    delete_qr_code,
    get_qr_analytics,
    get_qr_code,
    list_qr_codes,
    track_scan,
    update_qr_code,
)
from reviewqr.models.business import Business
from reviewqr.models.qr_code import QRCodeConfig, QRCodeUpdate, ScanMeta

router = APIRouter(prefix="/api/qr-codes", tags=["qr-codes"])


class TrackScanRequest(BaseModel):
    location: Optional[Dict[str, Any]] = None


@router.post("", status_code=201)
def create_qr_endpoint(
    body: Optional[QRCodeConfig] = None,
    business: Business = Depends(get_current_business),
):
    qr = create_qr_code(business.id, body or QRCodeConfig())
    return {"data": qr.model_dump(mode="json")}


@router.get("")
def list_qr_endpoint(business: Business = Depends(get_current_business)):
    items = list_qr_codes(business.id)
    return {"data": [qr.model_dump(mode="json") for qr in items], "count": len(items)}


@router.get("/{qr_id}")
def get_qr_endpoint(qr_id: str, owner_id: str = Depends(get_current_user_id)):
    return {"data": get_qr_code(qr_id, owner_id).model_dump(mode="json")}


@router.put("/{qr_id}")
def update_qr_endpoint(qr_id: str, body: QRCodeUpdate, owner_id: str = Depends(get_current_user_id)):
    return {"data": update_qr_code(qr_id, body, owner_id).model_dump(mode="json")}


@router.delete("/{qr_id}")
def delete_qr_endpoint(qr_id: str, owner_id: str = Depends(get_current_user_id)):
    delete_qr_code(qr_id, owner_id)
    return {"data": {"id": qr_id, "deleted": True}}


@router.post("/{qr_id}/track-scan")
def track_scan_endpoint(qr_id: str, request: Request, body: Optional[TrackScanRequest] = None):
    forwarded = request.headers.get("x-forwarded-for", "")
    ip_address = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    meta = ScanMeta(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        location=body.location if body else None,
    )
    scans = track_scan(qr_id, meta)
    return {"data": {"id": qr_id, "scansCount": scans}, "message": "Scan tracked successfully"}


@router.get("/{qr_id}/analytics")
def qr_analytics_endpoint(
    qr_id: str,
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    owner_id: str = Depends(get_current_user_id),
):
    analytics = get_qr_analytics(qr_id, startDate, endDate, owner_id)
    return {"data": analytics.model_dump(mode="json")}
