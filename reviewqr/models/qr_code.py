"""
reviewqr/models/qr_code.py

QR code registry models.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

_HEX_COLOR_LENGTHS = {4, 7, 9}

ErrorCorrection = Literal["L", "M", "Q", "H"]


def _check_hex_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not value.startswith("#") or len(value) not in _HEX_COLOR_LENGTHS:
        raise ValueError("color must be a hex value like #000000")
    try:
        int(value[1:], 16)
    except ValueError:
        raise ValueError("color must be a hex value like #000000")
    return value.upper()


class QRCodeConfig(BaseModel):
    """Visual configuration used when creating a QR code."""
    title: str = "Leave us a review"
    backgroundColor: str = "#FFFFFF"
    foregroundColor: str = "#000000"
    size: int = Field(300, ge=100, le=2000)
    errorCorrection: ErrorCorrection = "M"
    logoUrl: Optional[str] = None

    @field_validator("backgroundColor", "foregroundColor")
    @classmethod
    def validate_color(cls, value: str) -> str:
        return _check_hex_color(value)


class QRCodeUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    title: Optional[str] = None
    backgroundColor: Optional[str] = None
    foregroundColor: Optional[str] = None
    size: Optional[int] = Field(None, ge=100, le=2000)
    errorCorrection: Optional[ErrorCorrection] = None
    logoUrl: Optional[str] = None

    @field_validator("backgroundColor", "foregroundColor")
    @classmethod
    def validate_color(cls, value: Optional[str]) -> Optional[str]:
        return _check_hex_color(value)


class QRCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    title: str
    target_url: str
    image_data_url: str
    background_color: str
    foreground_color: str
    size: int
    error_correction: str
    logo_url: Optional[str] = None
    scans_count: int
    created_at: datetime
    updated_at: datetime


class ScanMeta(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    location: Optional[Dict[str, Any]] = None


class QRScan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    qr_code_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    scanned_at: datetime


class QRAnalytics(BaseModel):
    qr_code: QRCode
    total_scans: int
    recent_scans: List[QRScan]
