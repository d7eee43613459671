from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models import UNITS


# Maximum price: 9,999,999.99
MAX_PRICE = Decimal("9999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns a client may write, and which a create must include."""
    writable_fields: frozenset[str] | set[str]
    required_on_create: frozenset[str] | set[str] = field(default_factory=frozenset)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def to_decimal(value: Any, field: str) -> Decimal:
    """Strict number parsing for single mutations. Bools and text are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        stripped = value.strip()
        try:
            number = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
        if not number.is_finite():
            raise ValidationError(f"{field} must be a number")
        return number
    raise ValidationError(f"{field} must be a number")


def _coerce_value(col, value: Any):
    if isinstance(col.type, Numeric):
        return to_decimal(value, col.key)
    if isinstance(col.type, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be an integer")
    if isinstance(col.type, (String, Text)):
        if not isinstance(value, (str, int, float, Decimal)) or isinstance(value, bool):
            raise ValidationError(f"{col.key} must be text")
        return _checked_text(col, str(value).strip())
    return value


def _checked_text(col, text: str) -> str:
    if text == "" and not col.nullable:
        raise ValidationError(f"{col.key} cannot be blank")
    length = getattr(col.type, "length", None)
    if length and len(text) > length:
        raise ValidationError(f"{col.key} exceeds max length {length}")
    return text


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON body into a patch of column values.

    Keys outside policy.writable_fields are rejected together in one error.
    Values are coerced by column type; NOT NULL and String length come from
    the column. With partial=False every required_on_create key must be sent.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    cols = _columns_by_key(model)
    rejected = sorted(k for k in payload if k not in policy.writable_fields or k not in cols)
    if rejected:
        raise ValidationError(f"Fields not allowed: {', '.join(rejected)}")

    if not partial:
        missing = sorted(set(policy.required_on_create) - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    patch: dict = {}
    for key, raw in payload.items():
        col = cols[key]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _coerce_value(col, raw)
    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Range and vocabulary checks on a cleaned product patch.
    """
    for field in ("price", "cost_price"):
        value = patch.get(field)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{field} must be >= 0")
        if value > MAX_PRICE:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE:,}")

    if patch.get("min_stock") is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")

    if "unit" in patch and patch["unit"] not in UNITS:
        raise ValidationError(f"unit must be one of: {', '.join(UNITS)}")


def positive_quantity(value: Any, field: str = "quantity") -> Decimal:
    quantity = to_decimal(value, field)
    if quantity <= 0:
        raise ValidationError(f"{field} must be > 0")
    return quantity


def id_list(payload: dict, field: str = "ids") -> list[str]:
    """Non-empty list of string ids from a bulk request body."""
    ids = (payload or {}).get(field)
    if not isinstance(ids, list) or not ids:
        raise ValidationError(f"{field} must be a non-empty list")
    if not all(isinstance(i, str) and i.strip() for i in ids):
        raise ValidationError(f"{field} must contain string ids")
    # Preserve order, drop duplicates.
    return list(dict.fromkeys(i.strip() for i in ids))
