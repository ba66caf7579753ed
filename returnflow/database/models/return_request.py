"""
Return and return status history models.

A Return is tied to one order, is mutated only through the return state
machine and is never deleted. Every status it enters is recorded in the
append-only ``return_status_history`` table.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from returnflow.database.base import Base, BaseModel, JSONType, UUIDMixin
from returnflow.database.models.order import Order
from returnflow.services.returns.enums import ReturnStatus


def _status_values(statuses: type[ReturnStatus]) -> list[str]:
    return [status.value for status in statuses]


return_status_enum = SQLEnum(
    ReturnStatus, name="return_status", values_callable=_status_values
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Return(BaseModel):
    """
    Return case for an order.

    Attributes:
        id: Unique return identifier (UUID)
        order_id: Order the goods come from
        user_id: Customer who requested the return
        status: Current lifecycle status
        return_reason: Customer supplied reason
        customer_notes: Free text from the customer
        return_items: List of ``{"order_item_id", "quantity", "reason"}``
        admin_notes: Free text maintained by admins
        return_label_url: Carrier URL of the return label document
        tracking_number: Carrier tracking number of the return parcel
        refund_amount: Amount to refund for the returned items
        stripe_refund_id: Refund created at the payment provider
        stripe_refund_status: Last known refund status
        approved_at: Approval timestamp
        received_at: Timestamp the goods were confirmed received
        refunded_at: Timestamp the refund completed
    """

    __tablename__ = "returns"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Order the return belongs to",
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Customer who requested the return",
    )

    status: Mapped[ReturnStatus] = mapped_column(
        return_status_enum,
        nullable=False,
        default=ReturnStatus.RETURN_REQUESTED,
        index=True,
        comment="Current lifecycle status",
    )

    return_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    return_items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Returned lines: order_item_id, quantity, reason",
    )

    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    return_label_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    tracking_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    refund_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    stripe_refund_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    order: Mapped[Order] = relationship("Order")

    status_history: Mapped[list["ReturnStatusHistory"]] = relationship(
        "ReturnStatusHistory",
        back_populates="return_request",
        order_by="desc(ReturnStatusHistory.created_at)",
    )

    __table_args__ = (Index("ix_returns_order_status", "order_id", "status"),)


class ReturnStatusHistory(Base, UUIDMixin):
    """
    Append-only audit entry for a status a return entered.

    Attributes:
        return_id: Return the entry belongs to
        status: Status the return entered
        changed_by: User who triggered the change, None for system actors
        notes: Optional free text
        created_at: Time of the change
    """

    __tablename__ = "return_status_history"

    return_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[ReturnStatus] = mapped_column(
        return_status_enum,
        nullable=False,
    )

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    return_request: Mapped[Return] = relationship(
        "Return", back_populates="status_history"
    )


class SideEffectType(str, Enum):
    """Side effect run after a committed return transition."""

    RESTOCK = "restock"
    ORDER_SYNC = "order_sync"
    NOTIFICATION = "notification"


class ReturnSideEffectFailure(Base, UUIDMixin):
    """
    Durable record of a side effect that failed after its transition committed.

    Rows are written for manual replay and marked resolved by an operator.

    Attributes:
        return_id: Return whose transition triggered the side effect
        effect: Kind of side effect
        payload: Arguments needed to replay the side effect
        error: Error message of the failed attempt
        created_at: Time of the failure
        resolved_at: Time an operator marked it handled
    """

    __tablename__ = "return_side_effect_failures"

    return_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("returns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    effect: Mapped[SideEffectType] = mapped_column(
        SQLEnum(
            SideEffectType,
            name="side_effect_type",
            values_callable=lambda kinds: [kind.value for kind in kinds],
        ),
        nullable=False,
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    error: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
