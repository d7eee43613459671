# Overview: Service-layer operations for products; every mutation is audited in the same transaction.

"""
Products Service

Single-item catalogue mutations. Each one follows the same sequence inside
one transaction:

    mutate -> classify risk -> record audit entry -> consume quota -> commit

The route checks quota_service.can_mutate() before calling in. If the
ceiling is reached between the check and the increment, QuotaExceeded is
raised here and the whole transaction (mutation and audit entry) is
rolled back.
"""
from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Category, Product, User
from ..validation import ConflictError, NotFoundError, ValidationError
from .audit_context import Provenance, SYSTEM
from .audit_details import (
    AuditAction,
    ProductCreated,
    ProductDeleted,
    ProductUpdated,
    StockIncreased,
)
from . import audit_service, quota_service, risk_service


PRODUCT_MUTABLE_FIELDS = {
    "sku", "barcode", "name", "category_id", "price", "cost_price",
    "stock", "min_stock", "unit", "image",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: str) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError("Product not found")
    return p


def list_products(page: int | None = None, per_page: int | None = None) -> dict:
    """Product listing with optional pagination (default 20, max 100 per page)."""
    base_query = db.session.query(Product).order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _check_references(patch: dict, product_id: str | None = None) -> None:
    sku = patch.get("sku")
    if sku:
        q = db.session.query(Product.id).filter(Product.sku == sku)
        if product_id is not None:
            q = q.filter(Product.id != product_id)
        if q.first():
            raise ConflictError("SKU already exists.")
    category_id = patch.get("category_id")
    if category_id and db.session.get(Category, category_id) is None:
        raise ValidationError("Unknown category_id")


def create_product(*, patch: dict, actor: User, provenance: Provenance = SYSTEM) -> Product:
    """Create a product from a validated patch. Consumes one quota slot."""
    _check_references(patch)

    try:
        p = Product()
        apply_product_patch(p, patch)
        if not p.barcode:
            p.barcode = p.sku
        db.session.add(p)
        db.session.flush()

        detail = ProductCreated(name=p.name, sku=p.sku)
        audit_service.record(
            detail,
            entity_id=p.id,
            user_id=actor.id,
            provenance=provenance,
            risk_flags=risk_service.classify(detail.ACTION, detail.to_payload()),
            commit=False,
        )
        quota_service.consume(actor.id, actor.role, detail.ACTION)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return p


def update_product(*, product_id: str, patch: dict, actor: User, provenance: Provenance = SYSTEM) -> Product:
    """
    Apply a partial update. The pre-update snapshot goes into the audit
    entry and feeds the price_drop rule. Consumes one quota slot.
    """
    p = get_product(product_id)
    _check_references(patch, product_id=p.id)
    prior = p.snapshot()

    try:
        apply_product_patch(p, patch)
        db.session.flush()

        detail = ProductUpdated(changes=dict(patch))
        audit_service.record(
            detail,
            entity_id=p.id,
            user_id=actor.id,
            previous_snapshot=prior,
            provenance=provenance,
            risk_flags=risk_service.classify(detail.ACTION, detail.to_payload(), prior),
            commit=False,
        )
        quota_service.consume(actor.id, actor.role, detail.ACTION)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return p


def delete_products(*, product_ids: list[str], actor: User, provenance: Provenance = SYSTEM) -> int:
    """
    Delete one or more products, one audit entry per product.

    All-or-nothing: an unknown id rejects the whole request. Every entry
    carries the request's batch size so bulk_delete is tagged on each.
    """
    products = db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    found = {p.id for p in products}
    missing = [pid for pid in product_ids if pid not in found]
    if missing:
        raise NotFoundError(f"Product not found: {missing[0]}")

    batch_size = len(products)
    context = risk_service.RiskContext(batch_size=batch_size)
    try:
        for p in products:
            prior = p.snapshot()
            detail = ProductDeleted(name=p.name, batch_size=batch_size)
            db.session.delete(p)
            audit_service.record(
                detail,
                entity_id=p.id,
                user_id=actor.id,
                previous_snapshot=prior,
                provenance=provenance,
                risk_flags=risk_service.classify(detail.ACTION, detail.to_payload(), prior, context),
                commit=False,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return batch_size


def increase_stock(
    *,
    product_id: str,
    quantity: Decimal,
    actor: User,
    new_price: Decimal | None = None,
    provenance: Provenance = SYSTEM,
) -> Product:
    """Receive stock, optionally repricing. Does not consume quota."""
    p = get_product(product_id)
    prior = p.snapshot()
    old_stock, old_price = Decimal(p.stock), Decimal(p.price)

    try:
        p.stock = old_stock + quantity
        if new_price is not None:
            p.price = new_price
        db.session.flush()

        detail = StockIncreased(
            name=p.name,
            quantity=quantity,
            old_stock=old_stock,
            new_stock=Decimal(p.stock),
            old_price=old_price if new_price is not None else None,
            new_price=new_price,
        )
        audit_service.record(
            detail,
            entity_id=p.id,
            user_id=actor.id,
            previous_snapshot=prior,
            provenance=provenance,
            risk_flags=risk_service.classify(AuditAction.INCREASE_STOCK, detail.to_payload(), prior),
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return p
