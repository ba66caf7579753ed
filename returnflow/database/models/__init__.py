"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from returnflow.database.models.inventory import ProductVariant
from returnflow.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from returnflow.database.models.return_request import (
    Return,
    ReturnSideEffectFailure,
    ReturnStatusHistory,
    SideEffectType,
)
from returnflow.database.models.user import User, UserRole

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "ProductVariant",
    "Return",
    "ReturnSideEffectFailure",
    "ReturnStatusHistory",
    "SideEffectType",
    "User",
    "UserRole",
]
