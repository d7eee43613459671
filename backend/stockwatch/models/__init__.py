from .inventory import Category, Product, UNITS, DEFAULT_UNIT
from .auth import User, SessionToken, ROLES, ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER
from .sales import Sale, SaleReturn
from .audit import AuditLog, AuditLogImmutableError
from .quotas import DailyEditCount

__all__ = [
    'Category', 'Product', 'UNITS', 'DEFAULT_UNIT',
    'User', 'SessionToken', 'ROLES', 'ROLE_ADMIN', 'ROLE_MANAGER', 'ROLE_SELLER',
    'Sale', 'SaleReturn',
    'AuditLog', 'AuditLogImmutableError',
    'DailyEditCount',
]
