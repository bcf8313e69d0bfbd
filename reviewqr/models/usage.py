"""
reviewqr/models/usage.py

Usage ledger rows and entitlement check results.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict


class UsageRecord(BaseModel):
    """Per-business, per-month counter for one feature."""
    model_config = ConfigDict(frozen=True)

    business_id: str
    month: date
    feature_type: str
    count: int
    last_used_at: datetime
    details: Optional[Dict[str, Any]] = None


class UsageCheck(BaseModel):
    """Allow/deny decision plus remaining quota for a (business, feature) pair."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    limit: Union[bool, int, str, None] = None  # "unlimited" for uncapped features
    used: int = 0
    remaining: Union[int, str, None] = None
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    message: Optional[str] = None
