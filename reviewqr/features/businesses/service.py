"""
reviewqr/features/businesses/service.py

Tenants and the customers who review them.
"""

import logging
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from reviewqr.core.clock import ensure_utc, utc_now
from reviewqr.core.database import businesses, customers, get_db_session
from reviewqr.core.errors import NotFoundError, PermissionError, PersistenceError, ValidationError
from reviewqr.models.business import Business, Customer


logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = "Anonymous Customer"


def _row_to_business(row) -> Business:
    return Business(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        business_type=row.business_type,
        industry=row.industry,
        created_at=ensure_utc(row.created_at),
    )


def _row_to_customer(row) -> Customer:
    return Customer(
        id=row.id,
        business_id=row.business_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        created_at=ensure_utc(row.created_at),
    )


def create_business(
    owner_id: str,
    name: str,
    business_type: Optional[str] = None,
    industry: Optional[str] = None,
) -> Business:
    if not name or not name.strip():
        raise ValidationError("Business name is required", errors=["name: required"])

    business_id = str(uuid4())
    try:
        with get_db_session() as session:
            session.execute(
                insert(businesses).values(
                    id=business_id,
                    owner_id=owner_id,
                    name=name.strip(),
                    business_type=business_type,
                    industry=industry,
                    created_at=utc_now(),
                )
            )
            row = session.execute(select(businesses).where(businesses.c.id == business_id)).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to create business: {exc}") from exc

    logger.info("[businesses] created", extra={"business_id": business_id, "owner_id": owner_id})
    return _row_to_business(row)


def get_business(business_id: str) -> Business:
    """Raises NotFoundError."""
    with get_db_session() as session:
        row = session.execute(select(businesses).where(businesses.c.id == business_id)).first()
    if row is None:
        raise NotFoundError(f"Business {business_id} not found")
    return _row_to_business(row)


def get_owned_business(business_id: str, owner_id: str) -> Business:
    """The business, if `owner_id` owns it.

    Raises:
        NotFoundError: no such business
        PermissionError: someone else's business
    """
    business = get_business(business_id)
    if business.owner_id != owner_id:
        raise PermissionError("Access denied to this business")
    return business


def list_owned_businesses(owner_id: str) -> List[Business]:
    with get_db_session() as session:
        rows = session.execute(
            select(businesses)
            .where(businesses.c.owner_id == owner_id)
            .order_by(businesses.c.created_at)
        ).all()
    return [_row_to_business(row) for row in rows]


def create_customer(
    business_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> Customer:
    """Register a reviewing customer for a business (public form)."""
    customer_id = str(uuid4())
    try:
        with get_db_session() as session:
            if session.execute(select(businesses.c.id).where(businesses.c.id == business_id)).first() is None:
                raise NotFoundError(f"Business {business_id} not found")
            session.execute(
                insert(customers).values(
                    id=customer_id,
                    business_id=business_id,
                    name=(name or "").strip() or DEFAULT_CUSTOMER_NAME,
                    email=email or None,
                    phone=phone or None,
                    created_at=utc_now(),
                )
            )
            row = session.execute(select(customers).where(customers.c.id == customer_id)).first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to create customer: {exc}") from exc

    return _row_to_customer(row)


def get_customer(customer_id: str) -> Customer:
    with get_db_session() as session:
        row = session.execute(select(customers).where(customers.c.id == customer_id)).first()
    if row is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return _row_to_customer(row)
