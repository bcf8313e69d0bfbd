"""
reviewqr/models/review.py

Review and AI generation models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, computed_field


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    AI_GENERATED = "AI_GENERATED"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REGENERATED = "REGENERATED"


class ModerationAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    FLAG = "FLAG"
    DELETE = "DELETE"


class Review(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    customer_id: str
    rating: int
    feedback: str
    generated_review: Optional[str] = None
    status: ReviewStatus
    form_data: Optional[Dict[str, Any]] = None
    is_flagged: bool = False
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    moderator_notes: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class AIGeneration(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    review_id: str
    original_text: str
    enhanced_text: str
    confidence: float
    sentiment: str
    keywords: List[str]
    strategy: str
    status: GenerationStatus
    rejection_note: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    generated_at: datetime
    superseded_at: Optional[datetime] = None


class ReviewSubmission(BaseModel):
    """Public review form payload."""
    customerId: str
    businessId: str
    rating: Any
    feedback: Optional[str] = None
    formData: Optional[Dict[str, Any]] = None
