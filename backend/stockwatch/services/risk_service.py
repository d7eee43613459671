"""
Risk Classifier

Heuristic flags attached to audit entries for human review. Never blocks
an action.

classify() is pure: no I/O, no clock reads. Everything time- or
history-dependent arrives through RiskContext. Rules are independent and
additive; new heuristics are added as rows in RULES.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from .audit_details import AuditAction


BUSINESS_HOUR_START = 6
BUSINESS_HOUR_END = 22
HIGH_DISCOUNT_RATIO = Decimal("0.15")
PRICE_DROP_RATIO = Decimal("0.30")
MANY_RETURNS_THRESHOLD = 3
BULK_DELETE_THRESHOLD = 5


@dataclass(frozen=True)
class RiskContext:
    # Local (store timezone) time of the action.
    occurred_at: datetime | None = None
    # SALE_RETURN only: the actor's returns in the trailing two days,
    # counted BEFORE the current one is recorded.
    returns_count_last_2_days: int = 0
    # Deletions only: how many entities the same request deleted.
    batch_size: int = 1


def _dec(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _high_discount(action, detail, prior, ctx) -> bool:
    if action != AuditAction.CREATE_SALE:
        return False
    subtotal = _dec(detail.get("subtotal", detail.get("total")))
    discount = _dec(detail.get("discount_amount")) or Decimal(0)
    if subtotal is None or subtotal <= 0 or discount <= 0:
        return False
    return discount / subtotal > HIGH_DISCOUNT_RATIO


def _off_hours(action, detail, prior, ctx) -> bool:
    if action not in (AuditAction.CREATE_SALE, AuditAction.SALE_RETURN):
        return False
    if ctx.occurred_at is None:
        return False
    hour = ctx.occurred_at.hour
    return hour < BUSINESS_HOUR_START or hour > BUSINESS_HOUR_END


def _many_returns(action, detail, prior, ctx) -> bool:
    # Count excludes the current return, so >= 2 means this is the 3rd+.
    return (
        action == AuditAction.SALE_RETURN
        and ctx.returns_count_last_2_days >= MANY_RETURNS_THRESHOLD - 1
    )


def _bulk_delete(action, detail, prior, ctx) -> bool:
    return (
        action in (AuditAction.DELETE_PRODUCT, AuditAction.DELETE_USER)
        and ctx.batch_size >= BULK_DELETE_THRESHOLD
    )


def _price_drop(action, detail, prior, ctx) -> bool:
    if action != AuditAction.UPDATE_PRODUCT or not prior:
        return False
    changes = detail.get("changes", detail)
    if not isinstance(changes, Mapping) or "price" not in changes:
        return False
    old_price = _dec(prior.get("price"))
    new_price = _dec(changes.get("price"))
    if old_price is None or new_price is None or old_price <= 0 or new_price >= old_price:
        return False
    return (old_price - new_price) / old_price > PRICE_DROP_RATIO


Rule = Callable[[AuditAction, Mapping[str, Any], "Mapping[str, Any] | None", RiskContext], bool]

RULES: tuple[tuple[str, Rule], ...] = (
    ("high_discount", _high_discount),
    ("off_hours", _off_hours),
    ("many_returns", _many_returns),
    ("bulk_delete", _bulk_delete),
    ("price_drop", _price_drop),
)


def classify(
    action: AuditAction | str,
    detail: Mapping[str, Any] | None,
    prior_snapshot: Mapping[str, Any] | None = None,
    context: RiskContext | None = None,
) -> list[str]:
    """Risk tags for one action, in RULES order."""
    try:
        action = AuditAction(action)
    except ValueError:
        return []
    detail = detail or {}
    context = context or RiskContext()
    return [tag for tag, rule in RULES if rule(action, detail, prior_snapshot, context)]
