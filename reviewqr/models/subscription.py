"""
reviewqr/models/subscription.py

Subscription record for a business (1:1).
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from reviewqr.models.plan import PlanId


class SubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Subscription(BaseModel):
    """
    A business's current plan.

    `implicit=True` marks the synthesized FREE subscription used when the
    business has no stored record.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    business_id: str
    plan_id: PlanId
    plan_name: str
    price: float = 0.0
    status: SubscriptionStatus
    payment_reference: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    implicit: bool = False
