"""
Business and customer routes.

- POST /api/businesses: Owner registers a business
- GET  /api/businesses: Owner's businesses
- POST /api/customers/public: Review form registers the reviewing customer (no auth)
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from reviewqr.core.auth import get_current_user_id
from reviewqr.features.businesses.service import create_business, create_customer, list_owned_businesses

router = APIRouter(tags=["businesses"])


class BusinessCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    businessType: Optional[str] = None
    industry: Optional[str] = None


class CustomerCreate(BaseModel):
    businessId: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@router.post("/api/businesses", status_code=201)
def create_business_endpoint(body: BusinessCreate, owner_id: str = Depends(get_current_user_id)):
    business = create_business(owner_id, body.name, body.businessType, body.industry)
    return {"data": business.model_dump(mode="json")}


@router.get("/api/businesses")
def list_businesses_endpoint(owner_id: str = Depends(get_current_user_id)):
    items = list_owned_businesses(owner_id)
    return {"data": [b.model_dump(mode="json") for b in items], "count": len(items)}


@router.post("/api/customers/public", status_code=201)
def create_public_customer(body: CustomerCreate):
    customer = create_customer(body.businessId, body.name, body.email, body.phone)
    return {"data": customer.model_dump(mode="json")}
