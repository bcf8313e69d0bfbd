"""Shared route dependencies."""

from typing import Optional

from fastapi import Depends, Header, Query

from reviewqr.core.auth import get_current_user_id
from reviewqr.core.errors import NotFoundError
from reviewqr.features.businesses.service import get_owned_business, list_owned_businesses
from reviewqr.models.business import Business


def get_current_business(
    owner_id: str = Depends(get_current_user_id),
    business_id: Optional[str] = Query(None, alias="businessId"),
    x_business_id: Optional[str] = Header(None),
) -> Business:
    """
    The business an owner is acting on.

    Explicit `businessId` (query) or `X-Business-Id` (header) wins; otherwise
    the owner's first business.
    """
    selected = business_id or x_business_id
    if selected:
        return get_owned_business(selected, owner_id)

    owned = list_owned_businesses(owner_id)
    if not owned:
        raise NotFoundError("No business found for this account")
    return owned[0]
