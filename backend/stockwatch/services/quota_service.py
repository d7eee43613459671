"""
Quota Tracker

WHY: Lower-privilege staff get a bounded number of catalogue edits per day,
and each actor a bounded number of sale reversals.

DESIGN:
- can_mutate() is checked BEFORE the mutation; increment() runs only AFTER
  it succeeded. A rejected or failed request consumes nothing.
- increment() is a conditional UPDATE (edit_count < ceiling), never
  read-then-write.
- Only CREATE_PRODUCT / UPDATE_PRODUCT consume quota (audit_details.QUOTA_ACTIONS).
- Days are local calendar days in the store timezone.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DailyEditCount, Sale, SaleReturn, ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER
from .audit_details import QUOTA_ACTIONS, AuditAction
from stockwatch.time_utils import local_today, to_local, utcnow


# None = unlimited
ROLE_DAILY_LIMITS: dict[str, int | None] = {
    ROLE_ADMIN: None,
    ROLE_MANAGER: 20,
    ROLE_SELLER: 5,
}

RETURN_WINDOW = timedelta(days=2)
MAX_RETURNS_PER_WINDOW = 5


class QuotaExceeded(Exception):
    """The actor's daily edit ceiling was reached; the mutation is rolled back."""

    def __init__(self, limit: int | None):
        super().__init__(f"Daily edit limit reached ({limit} per day)")
        self.limit = limit


class ReturnNotAllowed(Exception):
    """Raised when a sale return violates the ownership, same-day or window rules."""

    def __init__(self, message: str, *, count: int | None = None):
        super().__init__(message)
        self.count = count


def daily_limit(role: str) -> int | None:
    """Daily ceiling for a role. Unknown roles get 0 (no edits)."""
    return ROLE_DAILY_LIMITS.get(role, 0)


def get_count(user_id: str, day: date | None = None) -> int:
    day = day or local_today()
    row = db.session.query(DailyEditCount).filter_by(user_id=user_id, day=day).first()
    return row.edit_count if row else 0


def can_mutate(user_id: str, role: str, day: date | None = None) -> bool:
    limit = daily_limit(role)
    if limit is None:
        return True
    return get_count(user_id, day) < limit


def _ensure_row(user_id: str, day: date) -> None:
    exists = db.session.query(DailyEditCount.id).filter_by(user_id=user_id, day=day).first()
    if exists:
        return
    nested = db.session.begin_nested()
    try:
        db.session.add(DailyEditCount(user_id=user_id, day=day, edit_count=0))
        nested.commit()
    except IntegrityError:
        # Another request created today's row first.
        nested.rollback()


def increment(user_id: str, role: str, day: date | None = None) -> bool:
    """
    Count one successful mutation. Joins the caller's transaction.

    Returns False if the ceiling was already reached (a concurrent request
    consumed the last slot); admins are never counted.
    """
    limit = daily_limit(role)
    if limit is None:
        return True
    day = day or local_today()
    _ensure_row(user_id, day)
    result = db.session.execute(
        update(DailyEditCount)
        .where(DailyEditCount.user_id == user_id)
        .where(DailyEditCount.day == day)
        .where(DailyEditCount.edit_count < limit)
        .values(edit_count=DailyEditCount.edit_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current_app.logger.warning("Edit quota exhausted for user %s on %s", user_id, day)
        return False
    return True


def consume(user_id: str, role: str, action: AuditAction) -> None:
    """increment() for mutation services: raises QuotaExceeded so the caller rolls back.

    Actions outside QUOTA_ACTIONS are not counted.
    """
    if action not in QUOTA_ACTIONS:
        return
    if not increment(user_id, role):
        raise QuotaExceeded(daily_limit(role))


def quota_status(user_id: str, role: str) -> dict:
    count = get_count(user_id)
    return {
        "count": count,
        "limit": daily_limit(role),
        "can_edit": can_mutate(user_id, role),
    }


# =============================================================================
# SALE RETURNS
# =============================================================================

def returns_count_last_2_days(user_id: str, now: datetime | None = None) -> int:
    cutoff = (now or utcnow()) - RETURN_WINDOW
    return (
        db.session.query(SaleReturn)
        .filter(SaleReturn.user_id == user_id)
        .filter(SaleReturn.created_at >= cutoff)
        .count()
    )


def check_return_allowed(sale: Sale, user_id: str, now: datetime | None = None) -> int:
    """
    Enforce both return constraints together.

    - the sale was made by the same actor earlier the same local day
    - fewer than MAX_RETURNS_PER_WINDOW returns in the trailing two days

    Returns the actor's return count in the window (before this one).
    """
    now = now or utcnow()
    if sale.user_id != user_id:
        raise ReturnNotAllowed("Returns are only allowed for your own sales")
    if to_local(sale.created_at).date() != to_local(now).date():
        raise ReturnNotAllowed("Returns are only allowed for sales made today")
    count = returns_count_last_2_days(user_id, now)
    if count >= MAX_RETURNS_PER_WINDOW:
        raise ReturnNotAllowed(
            f"Return limit reached: at most {MAX_RETURNS_PER_WINDOW} returns in 2 days",
            count=count,
        )
    return count


def record_return(sale_id: str, user_id: str, now: datetime | None = None) -> SaleReturn:
    """Append the return record. Joins the caller's transaction."""
    entry = SaleReturn(sale_id=sale_id, user_id=user_id, created_at=now or utcnow())
    db.session.add(entry)
    return entry


def returns_status(user_id: str) -> dict:
    count = returns_count_last_2_days(user_id)
    return {
        "count": count,
        "limit": MAX_RETURNS_PER_WINDOW,
        "remaining": max(0, MAX_RETURNS_PER_WINDOW - count),
    }
