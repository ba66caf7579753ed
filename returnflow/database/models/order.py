"""
Order and order item models.

Orders are created by the checkout subsystem. The return subsystem reads them
to resolve ownership and restock targets and writes only ``status``,
``has_returns`` and ``updated_at``.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from returnflow.database.base import Base, BaseModel, JSONType, UUIDMixin


class OrderStatus(str, Enum):
    """
    Order status enumeration for tracking order lifecycle.

    The ``return_*`` values mirror the progress of a return against the
    order and are written by the order status synchronizer.
    """

    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    RETURN_IN_TRANSIT = "return_in_transit"
    RETURN_RECEIVED = "return_received"
    RETURN_COMPLETED = "return_completed"


class PaymentStatus(str, Enum):
    """Payment status enumeration for tracking payment lifecycle."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Order(BaseModel):
    """
    Placed purchase.

    Attributes:
        id: Unique order identifier (UUID)
        user_id: Owning user, None for guest checkouts
        email: Customer email address
        status: Current order status
        payment_status: Current payment status
        subtotal: Sum of item prices
        shipping_cost: Shipping charges
        total: Amount charged
        shipping_address: Shipping address snapshot (``name``, ``address``,
            ``city``, ``postalCode``, ``country``)
        billing_address: Billing address snapshot
        stripe_payment_intent_id: Payment intent used at checkout
        has_returns: Whether a return was ever opened for the order
        paid_at: Payment timestamp
        delivered_at: Delivery timestamp
    """

    __tablename__ = "orders"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Owning user, NULL for guest orders",
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Customer email address",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Current payment status",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    shipping_address: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Shipping address snapshot",
    )

    billing_address: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Billing address snapshot",
    )

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Payment intent used at checkout",
    )

    has_returns: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.product_name",
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="check_total_non_negative"),
        Index("ix_orders_user_status", "user_id", "status"),
    )

    @property
    def customer_name(self) -> Optional[str]:
        """Display name from the shipping address snapshot, if any."""
        if not self.shipping_address:
            return None
        return self.shipping_address.get("name") or None


class OrderItem(Base, UUIDMixin):
    """
    One purchased line of an order. Immutable once created.

    Attributes:
        order_id: Owning order
        product_id: Purchased product
        variant_id: Purchased variant, None for products without variants
        product_name: Product name at purchase time
        size: Size label at purchase time
        color: Colour label at purchase time
        quantity: Units purchased
        price_at_purchase: Unit price charged
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
    )

    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="SET NULL"),
        nullable=True,
    )

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    price_at_purchase: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_item_quantity_positive"),
    )
