"""
reviewqr/features/usage/service.py

Usage ledger.

Handles:
- Atomic per-month usage increments (insert-or-increment in one statement)
- Current-month usage queries

Counts are never decremented; a new calendar month is a new key.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reviewqr.core.clock import month_start, normalize_now
from reviewqr.core.database import dialect_name, get_db_session, usage_records
from reviewqr.core.errors import PersistenceError
from reviewqr.models.usage import UsageRecord


def current_month(now: Optional[datetime] = None) -> date:
    """Ledger key for the calendar month containing `now`."""
    return month_start(now)


def _upsert_insert(session: Session):
    name = dialect_name(session)
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(f"Usage ledger does not support dialect {name}")
    return insert


def _increment(session: Session, business_id: str, feature_type: str, now: datetime, details: Optional[Dict[str, Any]]) -> None:
    insert = _upsert_insert(session)
    stmt = insert(usage_records).values(
        business_id=business_id,
        month=current_month(now),
        feature_type=feature_type,
        count=1,
        last_used_at=now,
        details=details,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["business_id", "month", "feature_type"],
        set_={
            "count": usage_records.c.count + 1,
            "last_used_at": now,
            "details": details,
        },
    )
    session.execute(stmt)


def record_usage(
    business_id: str,
    feature_type: str,
    details: Optional[Dict[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> None:
    """
    Increment the current-month counter for (business_id, feature_type).

    Call only after the gated action succeeded. Pass `session` to make the
    increment part of the caller's transaction.

    Raises:
        PersistenceError: ledger write failed
    """
    occurred_at = normalize_now(now)
    if session is not None:
        _increment(session, business_id, feature_type, occurred_at, details)
        return
    try:
        with get_db_session() as own_session:
            _increment(own_session, business_id, feature_type, occurred_at, details)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to record usage for {feature_type}: {exc}") from exc


def get_usage_count(
    business_id: str,
    feature_type: str,
    now: Optional[datetime] = None,
) -> int:
    """Count for the calendar month containing `now` (0 when no record yet)."""
    with get_db_session() as session:
        value = session.execute(
            select(usage_records.c.count)
            .where(usage_records.c.business_id == business_id)
            .where(usage_records.c.month == current_month(now))
            .where(usage_records.c.feature_type == feature_type)
        ).scalar()
    return int(value or 0)


def get_monthly_usage(business_id: str, now: Optional[datetime] = None) -> List[UsageRecord]:
    """All ledger rows for the month containing `now`."""
    with get_db_session() as session:
        rows = session.execute(
            select(usage_records)
            .where(usage_records.c.business_id == business_id)
            .where(usage_records.c.month == current_month(now))
            .order_by(usage_records.c.feature_type)
        ).all()
    return [
        UsageRecord(
            business_id=row.business_id,
            month=row.month,
            feature_type=row.feature_type,
            count=row.count,
            last_used_at=row.last_used_at,
            details=row.details,
        )
        for row in rows
    ]
