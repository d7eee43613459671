"""
Bulk import reconciliation.

Decides, for every parsed ImportRow, whether it refers to an existing
product, and applies the resulting add / update / remove decisions.

MATCHING KEYS:
- merge key: normalized name + unit + category. Price is NOT part of it,
  so a price change alone is an update of the existing item.
- full key:  normalized name + unit + price + category. Used only by
  RESET, where a different price makes a row a different item.

MODES:
- MERGE: additive. Present fields overwrite, absent fields are untouched,
  unmatched rows are created. Nothing is deleted. Stock is overwritten
  with the imported value, not summed.
- RESET: the file is the truth. Existing items whose full key is absent
  from the file are deleted first, then rows are matched by full key.

One PRODUCT_IMPORT audit entry is written per batch, in the same
transaction as the catalogue changes. Its per-item lists are the only
durable record of what a RESET deleted. Reconciliation is not idempotent
under partial failure, so a failed batch is rolled back and never retried.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Category, Product
from .audit_context import Provenance, SYSTEM
from .audit_details import AuditAction, ProductImport, jsonable
from .import_schemas import ImportRow, is_present, value_or
from . import audit_service, risk_service


DEFAULT_MIN_STOCK = Decimal("5")
CENTS = Decimal("0.01")


class ReconcileMode(str, Enum):
    MERGE = "merge"
    RESET = "reset"


class ReconciliationError(ValueError):
    """Raised for an invalid reconciliation request."""


def parse_mode(mode: Any) -> ReconcileMode:
    if isinstance(mode, ReconcileMode):
        return mode
    if not isinstance(mode, str):
        raise ReconciliationError("mode must be 'merge' or 'reset'")
    try:
        return ReconcileMode(mode.strip().lower())
    except ValueError:
        raise ReconciliationError("mode must be 'merge' or 'reset'")


@dataclass
class ReconcileResult:
    mode: ReconcileMode
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    added_list: list[dict[str, Any]] = field(default_factory=list)
    updated_list: list[dict[str, Any]] = field(default_factory=list)
    removed_list: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    audit_id: int | None = None

    def audit_detail(self) -> ProductImport:
        return ProductImport(
            mode=self.mode.value,
            added=self.added,
            updated=self.updated,
            removed=self.removed,
            added_list=jsonable(self.added_list),
            updated_list=jsonable(self.updated_list),
            removed_list=jsonable(self.removed_list),
        )

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "details": {
                "added": jsonable(self.added_list),
                "updated": jsonable(self.updated_list),
                "removed": jsonable(self.removed_list),
            },
            "warnings": self.warnings,
            "audit_id": self.audit_id,
        }


# =============================================================================
# MATCHING KEYS
# =============================================================================

def normalize_name(name: str | None) -> str:
    return (name or "").strip().casefold()


def price_key(price: Any) -> Decimal:
    """Numeric price for the full key. Blank counts as 0."""
    if price is None or price == "":
        return Decimal("0.00")
    return Decimal(str(price)).quantize(CENTS)


def merge_key(name: str, unit: str, category_id: str | None) -> tuple:
    return (normalize_name(name), unit, category_id)


def full_key(name: str, unit: str, price: Any, category_id: str | None) -> tuple:
    return (normalize_name(name), unit, price_key(price), category_id)


def _product_key(p: Product, mode: ReconcileMode) -> tuple:
    if mode is ReconcileMode.MERGE:
        return merge_key(p.name, p.unit, p.category_id)
    return full_key(p.name, p.unit, p.price, p.category_id)


def _row_key(row: ImportRow, category_id: str | None, mode: ReconcileMode) -> tuple:
    if mode is ReconcileMode.MERGE:
        return merge_key(row.name, row.unit, category_id)
    return full_key(row.name, row.unit, value_or(row.price, None), category_id)


# =============================================================================
# HELPERS
# =============================================================================

class _CategoryResolver:
    """Resolves a row's category reference (id or name) to a category id."""

    def __init__(self, categories: list[Category]):
        self._ids = {c.id for c in categories}
        self._by_name = {c.name.strip().casefold(): c.id for c in categories}

    @classmethod
    def load(cls) -> "_CategoryResolver":
        return cls(db.session.query(Category).all())

    def resolve(self, row: ImportRow, warnings: list[dict[str, Any]]) -> str | None:
        if not is_present(row.category):
            return None
        ref = row.category.value
        if ref in self._ids:
            return ref
        found = self._by_name.get(ref.strip().casefold())
        if found is None:
            warnings.append({
                "row": row.row_number,
                "field": "category",
                "message": f"unknown category {ref!r}; item left uncategorized",
            })
        return found


class _SkuAllocator:
    """Hands out SKUs unique against every SKU known when the batch started."""

    def __init__(self, used: set[str]):
        self._used = set(used)

    def allocate(self, base: str) -> str:
        candidate = base
        suffix = 0
        while candidate in self._used:
            suffix += 1
            candidate = f"{base}-{suffix}"
        self._used.add(candidate)
        return candidate


def _placeholder_sku(sequence: int) -> str:
    return f"IMP-{int(time.time() * 1000)}-{sequence}"


def _item_summary(p: Product) -> dict[str, Any]:
    return {"name": p.name, "quantity": p.stock, "price": p.price, "unit": p.unit}


def _index(products: list[Product], mode: ReconcileMode) -> dict[tuple, Product]:
    index: dict[tuple, Product] = {}
    for p in products:
        index.setdefault(_product_key(p, mode), p)
    return index


# =============================================================================
# APPLY
# =============================================================================

def _create(row: ImportRow, category_id: str | None, skus: _SkuAllocator, result: ReconcileResult) -> Product:
    sku = skus.allocate(value_or(row.sku, None) or _placeholder_sku(result.added))
    product = Product(
        name=row.name,
        sku=sku,
        barcode=value_or(row.barcode, sku),
        price=value_or(row.price, Decimal("0")),
        cost_price=value_or(row.cost_price, Decimal("0")),
        stock=value_or(row.stock, Decimal("0")),
        min_stock=value_or(row.min_stock, DEFAULT_MIN_STOCK),
        unit=row.unit,
        category_id=category_id,
        image=value_or(row.image, None),
    )
    db.session.add(product)
    result.added += 1
    result.added_list.append({"sku": sku, **_item_summary(product)})
    return product


def _merge_update(p: Product, row: ImportRow, category_id: str | None, result: ReconcileResult) -> None:
    """Overwrite present fields that differ; absent fields are untouched."""
    changes: list[str] = []
    old_stock, old_price = p.stock, p.price

    if is_present(row.stock) and Decimal(p.stock) != row.stock.value:
        p.stock = row.stock.value
        changes.append("stock")
    if is_present(row.price) and price_key(p.price) != price_key(row.price.value):
        p.price = row.price.value
        changes.append("price")
    if is_present(row.cost_price) and Decimal(p.cost_price or 0) != row.cost_price.value:
        p.cost_price = row.cost_price.value
        changes.append("cost_price")
    if is_present(row.min_stock) and Decimal(p.min_stock or 0) != row.min_stock.value:
        p.min_stock = row.min_stock.value
        changes.append("min_stock")
    if category_id is not None and p.category_id != category_id:
        p.category_id = category_id
        changes.append("category")

    if not changes:
        result.unchanged += 1
        return

    entry: dict[str, Any] = {"name": p.name, "unit": p.unit, "changes": changes}
    if "stock" in changes:
        entry["old_stock"] = old_stock
        entry["new_stock"] = p.stock
    if "price" in changes:
        entry["old_price"] = old_price
        entry["new_price"] = p.price
    result.updated += 1
    result.updated_list.append(entry)


def _reset_update(p: Product, row: ImportRow, category_id: str | None, result: ReconcileResult) -> None:
    """Price is part of the key, so it is never overwritten here."""
    p.stock = value_or(row.stock, Decimal("0"))
    p.min_stock = value_or(row.min_stock, DEFAULT_MIN_STOCK)
    p.cost_price = value_or(row.cost_price, Decimal("0"))
    p.category_id = category_id
    result.updated += 1
    result.updated_list.append(_item_summary(p))


def _remove_absent(existing: list[Product], file_keys: set[tuple], result: ReconcileResult) -> list[Product]:
    survivors = []
    for p in existing:
        if _product_key(p, ReconcileMode.RESET) in file_keys:
            survivors.append(p)
            continue
        result.removed += 1
        result.removed_list.append(_item_summary(p))
        db.session.delete(p)
    db.session.flush()
    return survivors


def reconcile(
    rows: list[ImportRow],
    mode: ReconcileMode | str,
    *,
    user_id: str | None,
    provenance: Provenance = SYSTEM,
    warnings: list[dict[str, Any]] | None = None,
) -> ReconcileResult:
    """
    Apply an import batch and record one PRODUCT_IMPORT audit entry.

    Rows inside the batch see earlier rows' effects: a duplicate row
    matches the item an earlier row created.
    """
    mode = parse_mode(mode)
    result = ReconcileResult(mode=mode, warnings=list(warnings or []))

    try:
        resolver = _CategoryResolver.load()
        resolved = [(row, resolver.resolve(row, result.warnings)) for row in rows]

        existing = db.session.query(Product).order_by(Product.created_at.asc(), Product.id.asc()).all()
        # Removed SKUs stay reserved for the rest of the batch.
        skus = _SkuAllocator({p.sku for p in existing})

        if mode is ReconcileMode.RESET:
            file_keys = {_row_key(row, cat, mode) for row, cat in resolved}
            existing = _remove_absent(existing, file_keys, result)

        index = _index(existing, mode)
        for row, category_id in resolved:
            key = _row_key(row, category_id, mode)
            product = index.get(key)
            if product is None:
                index[key] = _create(row, category_id, skus, result)
            elif mode is ReconcileMode.MERGE:
                _merge_update(product, row, category_id, result)
            else:
                _reset_update(product, row, category_id, result)

        detail = result.audit_detail()
        payload = detail.to_payload()
        result.audit_id = audit_service.record(
            detail,
            user_id=user_id,
            provenance=provenance,
            risk_flags=risk_service.classify(AuditAction.PRODUCT_IMPORT, payload),
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Product import (%s) by %s: %d added, %d updated, %d removed, %d unchanged",
        mode.value, user_id, result.added, result.updated, result.removed, result.unchanged,
    )
    return result


# =============================================================================
# PREVIEW
# =============================================================================

def preview(rows: list[ImportRow], mode: ReconcileMode | str) -> dict[str, Any]:
    """
    Counts what reconcile() would do, without touching the catalogue.

    In MERGE mode a matched row counts as an update even if its values are
    already current; the preview does not compare field values.
    """
    mode = parse_mode(mode)
    warnings: list[dict[str, Any]] = []
    resolver = _CategoryResolver.load()
    resolved = [(row, resolver.resolve(row, warnings)) for row in rows]
    existing = db.session.query(Product).all()

    to_remove = 0
    if mode is ReconcileMode.RESET:
        file_keys = {_row_key(row, cat, mode) for row, cat in resolved}
        kept = [p for p in existing if _product_key(p, mode) in file_keys]
        to_remove = len(existing) - len(kept)
        existing = kept

    known = set(_index(existing, mode))
    to_add = to_update = 0
    for row, category_id in resolved:
        key = _row_key(row, category_id, mode)
        if key in known:
            to_update += 1
        else:
            to_add += 1
            known.add(key)

    return {
        "mode": mode.value,
        "to_add": to_add,
        "to_update": to_update,
        "to_remove": to_remove,
        "warnings": warnings,
    }
