from __future__ import annotations

from ..extensions import db
from stockwatch.time_utils import to_utc_z
from .inventory import new_id


class Sale(db.Model):
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    # Plain reference: sales outlive the user that rang them up.
    user_id = db.Column(db.String(32), nullable=False, index=True)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)

    # [{"product_id", "quantity", "price_at_sale"}]
    items = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subtotal": float(self.subtotal),
            "discount_amount": float(self.discount_amount or 0),
            "total": float(self.total),
            "payment_method": self.payment_method,
            "items": self.items,
            "created_at": to_utc_z(self.created_at),
        }


class SaleReturn(db.Model):
    """
    One reversal of a sale.

    Append-only: used to bound how many reversals an actor performs in a
    trailing two-day window.
    """
    __tablename__ = "sale_returns"
    __table_args__ = (
        db.Index("ix_sale_returns_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.String(32), nullable=False, index=True)
    user_id = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
