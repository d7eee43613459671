# Overview: Service-layer operations for sales and sale returns; stock movement plus audit.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Product, Sale, SaleReturn, User, ROLE_SELLER
from ..validation import NotFoundError, ValidationError, positive_quantity, to_decimal
from stockwatch.time_utils import to_local, utcnow
from .audit_context import Provenance, SYSTEM
from .audit_details import SaleCreated, SaleReturned
from .quota_service import ReturnNotAllowed
from . import audit_service, quota_service, risk_service


PAYMENT_METHODS = ("cash", "card", "mobile", "transfer")


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _parse_items(raw_items) -> list[tuple[str, Decimal]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    items = []
    for idx, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict) or not raw.get("product_id"):
            raise ValidationError(f"item {idx}: product_id is required")
        items.append((str(raw["product_id"]), positive_quantity(raw.get("quantity"), f"item {idx} quantity")))
    return items


def _validate_on_hand(products: dict[str, Product], items: list[tuple[str, Decimal]]) -> None:
    totals: dict[str, Decimal] = {}
    for product_id, qty in items:
        totals[product_id] = totals.get(product_id, Decimal(0)) + qty

    insufficient = []
    for product_id, qty in totals.items():
        on_hand = Decimal(products[product_id].stock)
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": float(qty),
                "on_hand": float(on_hand),
            })

    if insufficient:
        raise SaleError(
            "Insufficient inventory for sale",
            details={"items": insufficient},
        )


def create_sale(
    *,
    actor: User,
    items: list,
    payment_method: str,
    discount_amount=0,
    provenance: Provenance = SYSTEM,
    now: datetime | None = None,
) -> Sale:
    """
    Ring up a sale at current catalogue prices and decrement stock.

    Audited as CREATE_SALE; high_discount and off_hours are evaluated here.
    """
    parsed = _parse_items(items)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    discount = to_decimal(discount_amount or 0, "discount_amount")
    if discount < 0:
        raise ValidationError("discount_amount must be >= 0")

    ids = {pid for pid, _ in parsed}
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}
    missing = sorted(ids - products.keys())
    if missing:
        raise NotFoundError(f"Product not found: {missing[0]}")
    _validate_on_hand(products, parsed)

    lines = []
    subtotal = Decimal(0)
    for product_id, qty in parsed:
        p = products[product_id]
        price = Decimal(p.price)
        line_total = (price * qty).quantize(Decimal("0.01"))
        subtotal += line_total
        lines.append({
            "product_id": p.id,
            "product_name": p.name,
            "unit": p.unit,
            "quantity": float(qty),
            "price_at_sale": float(price),
            "subtotal": float(line_total),
        })
    if discount > subtotal:
        raise ValidationError("discount_amount cannot exceed the subtotal")

    now = now or utcnow()
    try:
        for product_id, qty in parsed:
            p = products[product_id]
            p.stock = Decimal(p.stock) - qty

        sale = Sale(
            user_id=actor.id,
            subtotal=subtotal,
            discount_amount=discount,
            total=subtotal - discount,
            payment_method=payment_method,
            items=lines,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        detail = SaleCreated(
            items=lines,
            subtotal=subtotal,
            discount_amount=discount,
            total=subtotal - discount,
            payment_method=payment_method,
            item_count=len(lines),
        )
        context = risk_service.RiskContext(occurred_at=to_local(now))
        audit_service.record(
            detail,
            entity_id=sale.id,
            user_id=actor.id,
            provenance=provenance,
            risk_flags=risk_service.classify(detail.ACTION, detail.to_payload(), context=context),
            occurred_at=now,
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return sale


def return_sale(
    *,
    sale_id: str,
    actor: User,
    provenance: Provenance = SYSTEM,
    now: datetime | None = None,
) -> Sale:
    """
    Reverse a sale: restore stock, append a SaleReturn, audit SALE_RETURN.

    Only the seller who made the sale may return it, only on the same
    local day, at most once, and within the trailing two-day return limit.
    """
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found")

    now = now or utcnow()
    prior_count = quota_service.check_return_allowed(sale, actor.id, now)
    if db.session.query(SaleReturn.id).filter_by(sale_id=sale.id).first():
        raise ReturnNotAllowed("Sale has already been returned", count=prior_count)

    items_returned = []
    stock_impact = []
    try:
        for item in sale.items:
            qty = Decimal(str(item["quantity"]))
            items_returned.append({
                "product_id": item["product_id"],
                "quantity": item["quantity"],
                "price_at_sale": item["price_at_sale"],
                "subtotal": item.get("subtotal"),
            })
            p = db.session.get(Product, item["product_id"])
            # A product deleted since the sale has nothing to restore.
            if p is None:
                continue
            p.stock = Decimal(p.stock) + qty
            stock_impact.append({"product_id": p.id, "quantity_restored": item["quantity"]})

        quota_service.record_return(sale.id, actor.id, now)

        detail = SaleReturned(
            total=Decimal(sale.total),
            item_count=len(sale.items),
            items_returned=items_returned,
            stock_impact=stock_impact,
        )
        context = risk_service.RiskContext(
            occurred_at=to_local(now),
            returns_count_last_2_days=prior_count,
        )
        audit_service.record(
            detail,
            entity_id=sale.id,
            user_id=actor.id,
            provenance=provenance,
            risk_flags=risk_service.classify(detail.ACTION, detail.to_payload(), context=context),
            occurred_at=now,
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return sale


def list_sales(actor: User) -> list[Sale]:
    """Sellers see their own sales; managers and admins see all."""
    q = db.session.query(Sale)
    if actor.role == ROLE_SELLER:
        q = q.filter(Sale.user_id == actor.id)
    return q.order_by(Sale.created_at.desc()).all()
