"""
reviewqr/models/business.py

Tenant (business) and customer models.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Business(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    name: str
    business_type: Optional[str] = None
    industry: Optional[str] = None
    created_at: datetime


class Customer(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: datetime
