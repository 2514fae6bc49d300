from app.models.credit_pool import CreditPool
from app.models.order import Order, PoolDebit
from app.models.order_item import OrderItem
from app.models.audit_log import AuditLog

__all__ = [
    "CreditPool",
    "Order",
    "PoolDebit",
    "OrderItem",
    "AuditLog",
]
