"""
Typed audit payloads.

Every audited action has exactly one detail shape. Each shape is a frozen
dataclass carrying its action tag and entity type, and serialises into the
common JSON envelope stored in AuditLog.details and exported to CSV.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar


class AuditAction(str, Enum):
    CREATE_PRODUCT = "CREATE_PRODUCT"
    UPDATE_PRODUCT = "UPDATE_PRODUCT"
    DELETE_PRODUCT = "DELETE_PRODUCT"
    INCREASE_STOCK = "INCREASE_STOCK"
    PRODUCT_IMPORT = "PRODUCT_IMPORT"
    CREATE_SALE = "CREATE_SALE"
    SALE_RETURN = "SALE_RETURN"
    CREATE_USER = "CREATE_USER"
    DELETE_USER = "DELETE_USER"


# Actions that consume the per-day edit quota.
QUOTA_ACTIONS = frozenset({AuditAction.CREATE_PRODUCT, AuditAction.UPDATE_PRODUCT})


def jsonable(value: Any) -> Any:
    """Convert Decimals (and containers of them) into JSON-native values."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class AuditDetail:
    ACTION: ClassVar[AuditAction]
    ENTITY_TYPE: ClassVar[str]

    def to_payload(self) -> dict[str, Any]:
        return {f.name: jsonable(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class ProductCreated(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.CREATE_PRODUCT
    ENTITY_TYPE: ClassVar[str] = "product"

    name: str
    sku: str


@dataclass(frozen=True)
class ProductUpdated(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.UPDATE_PRODUCT
    ENTITY_TYPE: ClassVar[str] = "product"

    changes: dict[str, Any]


@dataclass(frozen=True)
class ProductDeleted(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.DELETE_PRODUCT
    ENTITY_TYPE: ClassVar[str] = "product"

    name: str
    batch_size: int = 1


@dataclass(frozen=True)
class StockIncreased(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.INCREASE_STOCK
    ENTITY_TYPE: ClassVar[str] = "product"

    name: str
    quantity: Decimal
    old_stock: Decimal
    new_stock: Decimal
    old_price: Decimal | None = None
    new_price: Decimal | None = None


@dataclass(frozen=True)
class ProductImport(AuditDetail):
    """
    The per-item lists are the only durable record of what a Reset
    import destroyed.
    """
    ACTION: ClassVar[AuditAction] = AuditAction.PRODUCT_IMPORT
    ENTITY_TYPE: ClassVar[str] = "product"

    mode: str
    added: int
    updated: int
    removed: int
    added_list: list[dict[str, Any]] = field(default_factory=list)
    updated_list: list[dict[str, Any]] = field(default_factory=list)
    removed_list: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SaleCreated(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.CREATE_SALE
    ENTITY_TYPE: ClassVar[str] = "sale"

    items: list[dict[str, Any]]
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    payment_method: str
    item_count: int


@dataclass(frozen=True)
class SaleReturned(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.SALE_RETURN
    ENTITY_TYPE: ClassVar[str] = "sale"

    total: Decimal
    item_count: int
    items_returned: list[dict[str, Any]]
    stock_impact: list[dict[str, Any]]


@dataclass(frozen=True)
class UserCreated(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.CREATE_USER
    ENTITY_TYPE: ClassVar[str] = "user"

    username: str
    role: str


@dataclass(frozen=True)
class UserDeleted(AuditDetail):
    ACTION: ClassVar[AuditAction] = AuditAction.DELETE_USER
    ENTITY_TYPE: ClassVar[str] = "user"

    username: str
    batch_size: int = 1
