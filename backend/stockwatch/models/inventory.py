from __future__ import annotations

import uuid

from ..extensions import db
from stockwatch.time_utils import to_utc_z


# Closed measurement-unit vocabulary. Import rows are normalized onto it.
UNITS = ("each", "kg", "gram", "pack", "case")
DEFAULT_UNIT = "each"


def new_id() -> str:
    return uuid.uuid4().hex


def _num(value):
    return float(value) if value is not None else None


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False, unique=True)
    color = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Inventory item.

    SKU DESIGN DECISION:
    Product.sku is globally unique (storage enforced).
    Name + unit + category is the natural identity used when reconciling
    bulk imports; storage does NOT enforce it, only the import matching does.

    Money and quantities are Numeric so that price comparisons in the
    matching key and in risk rules are exact.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_barcode", "barcode"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    category_id = db.Column(db.String(32), db.ForeignKey("categories.id"), nullable=True, index=True)

    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    cost_price = db.Column(db.Numeric(10, 2), nullable=True, default=0)
    stock = db.Column(db.Numeric(10, 3), nullable=False, default=0)
    min_stock = db.Column(db.Numeric(10, 3), nullable=True, default=5)

    unit = db.Column(db.String(16), nullable=False, default=DEFAULT_UNIT)
    image = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} unit={self.unit}>"

    def snapshot(self) -> dict:
        """Pre-mutation state captured into audit entries."""
        return {
            "name": self.name,
            "sku": self.sku,
            "price": _num(self.price),
            "stock": _num(self.stock),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "category_id": self.category_id,
            "price": _num(self.price),
            "cost_price": _num(self.cost_price),
            "stock": _num(self.stock),
            "min_stock": _num(self.min_stock),
            "unit": self.unit,
            "image": self.image,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
