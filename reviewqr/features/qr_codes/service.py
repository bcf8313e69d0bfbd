"""
reviewqr/features/qr_codes/service.py

QR code registry.

Handles:
- PNG rendering of the public review-form URL (segno, data URL)
- CRUD for a business's codes; re-render only when a visual field changes
- Scan tracking: in-database counter increment plus an append-only scan row
- Scan analytics over a time window
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4

import segno
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from reviewqr.core.clock import ensure_utc, normalize_now
from reviewqr.core.config import settings
from reviewqr.core.database import get_db_session, qr_codes, qr_scans
from reviewqr.core.errors import NotFoundError, PersistenceError, ValidationError
from reviewqr.features.businesses.service import get_business, get_owned_business
from reviewqr.models.qr_code import QRAnalytics, QRCode, QRCodeConfig, QRCodeUpdate, QRScan, ScanMeta


logger = logging.getLogger(__name__)

QR_BORDER = 2  # quiet-zone modules around the symbol
RECENT_SCANS = 10

# Stored column -> QRCodeUpdate field, for the fields that change the image
VISUAL_FIELDS = {
    "background_color": "backgroundColor",
    "foreground_color": "foregroundColor",
    "size": "size",
    "error_correction": "errorCorrection",
}


def review_form_url(business_id: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/review/{business_id}"


def render_qr_image(
    target_url: str,
    *,
    size: int = 300,
    background_color: str = "#FFFFFF",
    foreground_color: str = "#000000",
    error_correction: str = "M",
) -> str:
    """PNG data URL about `size` pixels wide (never smaller than one pixel per module)."""
    try:
        qr = segno.make(target_url, error=error_correction.lower(), micro=False)
    except segno.DataOverflowError as exc:
        raise ValidationError("Target URL is too long for a QR code", errors=[str(exc)]) from exc
    width, _ = qr.symbol_size(scale=1, border=QR_BORDER)
    scale = max(1, size // width)
    return qr.png_data_uri(
        scale=scale,
        border=QR_BORDER,
        dark=foreground_color,
        light=background_color,
    )


def _row_to_qr(row) -> QRCode:
    return QRCode(
        id=row.id,
        business_id=row.business_id,
        title=row.title,
        target_url=row.target_url,
        image_data_url=row.image_data_url,
        background_color=row.background_color,
        foreground_color=row.foreground_color,
        size=row.size,
        error_correction=row.error_correction,
        logo_url=row.logo_url,
        scans_count=row.scans_count,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _row_to_scan(row) -> QRScan:
    return QRScan(
        id=row.id,
        qr_code_id=row.qr_code_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        location=row.location,
        scanned_at=ensure_utc(row.scanned_at),
    )


def get_qr_code(qr_id: str, owner_id: Optional[str] = None) -> QRCode:
    """Raises NotFoundError, or PermissionError when `owner_id` does not own the business."""
    with get_db_session() as session:
        row = session.execute(select(qr_codes).where(qr_codes.c.id == qr_id)).first()
    if row is None:
        raise NotFoundError(f"QR code {qr_id} not found")
    if owner_id is not None:
        get_owned_business(row.business_id, owner_id)
    return _row_to_qr(row)


def list_qr_codes(business_id: str) -> List[QRCode]:
    with get_db_session() as session:
        rows = session.execute(
            select(qr_codes)
            .where(qr_codes.c.business_id == business_id)
            .order_by(qr_codes.c.created_at.desc())
        ).all()
    return [_row_to_qr(row) for row in rows]


def create_qr_code(
    business_id: str,
    config: Optional[QRCodeConfig] = None,
    owner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> QRCode:
    if owner_id is not None:
        get_owned_business(business_id, owner_id)
    else:
        get_business(business_id)

    config = config or QRCodeConfig()
    target_url = review_form_url(business_id)
    image = render_qr_image(
        target_url,
        size=config.size,
        background_color=config.backgroundColor,
        foreground_color=config.foregroundColor,
        error_correction=config.errorCorrection,
    )
    current = normalize_now(now)
    qr_id = str(uuid4())
    try:
        with get_db_session() as session:
            session.execute(
                insert(qr_codes).values(
                    id=qr_id,
                    business_id=business_id,
                    title=config.title,
                    target_url=target_url,
                    image_data_url=image,
                    background_color=config.backgroundColor,
                    foreground_color=config.foregroundColor,
                    size=config.size,
                    error_correction=config.errorCorrection,
                    logo_url=config.logoUrl,
                    scans_count=0,
                    created_at=current,
                    updated_at=current,
                )
            )
            row = session.execute(select(qr_codes).where(qr_codes.c.id == qr_id)).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to create QR code: {exc}") from exc

    logger.info("[qr] created", extra={"business_id": business_id, "qr_code_id": qr_id})
    return _row_to_qr(row)


def update_qr_code(
    qr_id: str,
    changes: QRCodeUpdate,
    owner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> QRCode:
    """Apply a partial update. The image is re-rendered only if a visual field actually changed."""
    existing = get_qr_code(qr_id, owner_id)
    provided = changes.model_dump(exclude_unset=True, exclude_none=True)

    values = {}
    if "title" in provided:
        values["title"] = provided["title"]
    if "logoUrl" in provided:
        values["logo_url"] = provided["logoUrl"]

    visual_changed = False
    for column, field_name in VISUAL_FIELDS.items():
        if field_name in provided and provided[field_name] != getattr(existing, column):
            values[column] = provided[field_name]
            visual_changed = True

    if visual_changed:
        values["image_data_url"] = render_qr_image(
            existing.target_url,
            size=values.get("size", existing.size),
            background_color=values.get("background_color", existing.background_color),
            foreground_color=values.get("foreground_color", existing.foreground_color),
            error_correction=values.get("error_correction", existing.error_correction),
        )

    if not values:
        return existing

    values["updated_at"] = normalize_now(now)
    try:
        with get_db_session() as session:
            session.execute(update(qr_codes).where(qr_codes.c.id == qr_id).values(**values))
            row = session.execute(select(qr_codes).where(qr_codes.c.id == qr_id)).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to update QR code: {exc}") from exc

    logger.info("[qr] updated", extra={"qr_code_id": qr_id, "rerendered": visual_changed})
    return _row_to_qr(row)


def delete_qr_code(qr_id: str, owner_id: Optional[str] = None) -> None:
    """Remove the code and its scan history."""
    get_qr_code(qr_id, owner_id)
    try:
        with get_db_session() as session:
            session.execute(delete(qr_scans).where(qr_scans.c.qr_code_id == qr_id))
            session.execute(delete(qr_codes).where(qr_codes.c.id == qr_id))
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to delete QR code: {exc}") from exc
    logger.info("[qr] deleted", extra={"qr_code_id": qr_id})


def track_scan(qr_id: str, meta: Optional[ScanMeta] = None, *, now: Optional[datetime] = None) -> int:
    """
    Count one scan. Returns the new scans_count.

    The counter update runs first, as `scans_count + 1` in the database, and
    the scan row is inserted in the same transaction.

    Raises:
        NotFoundError: unknown QR code
    """
    meta = meta or ScanMeta()
    current = normalize_now(now)
    try:
        with get_db_session() as session:
            result = session.execute(
                update(qr_codes)
                .where(qr_codes.c.id == qr_id)
                .values(scans_count=qr_codes.c.scans_count + 1)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"QR code {qr_id} not found")
            session.execute(
                insert(qr_scans).values(
                    qr_code_id=qr_id,
                    ip_address=meta.ip_address,
                    user_agent=meta.user_agent,
                    location=meta.location,
                    scanned_at=current,
                )
            )
            count = session.execute(
                select(qr_codes.c.scans_count).where(qr_codes.c.id == qr_id)
            ).scalar()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to record scan: {exc}") from exc
    return int(count)


def get_qr_analytics(
    qr_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    owner_id: Optional[str] = None,
) -> QRAnalytics:
    """Scans in [start, end] (default: last 30 days) and the 10 most recent of them."""
    qr = get_qr_code(qr_id, owner_id)
    end_at = normalize_now(end)
    start_at = normalize_now(start) if start else end_at - timedelta(days=30)

    window = (
        (qr_scans.c.qr_code_id == qr_id)
        & (qr_scans.c.scanned_at >= start_at)
        & (qr_scans.c.scanned_at <= end_at)
    )
    with get_db_session() as session:
        total = session.execute(select(func.count()).select_from(qr_scans).where(window)).scalar()
        recent = session.execute(
            select(qr_scans)
            .where(window)
            .order_by(qr_scans.c.scanned_at.desc(), qr_scans.c.id.desc())
            .limit(RECENT_SCANS)
        ).all()

    return QRAnalytics(
        qr_code=qr,
        total_scans=int(total or 0),
        recent_scans=[_row_to_scan(row) for row in recent],
    )
