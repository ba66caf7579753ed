"""
Return Pydantic schemas for API request/response validation.

Request models stay permissive where the service owns the rule (a missing
rejection reason is a 400 from the service, not a 422 from validation).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from returnflow.database.models.order import OrderStatus, PaymentStatus
from returnflow.database.models.return_request import SideEffectType
from returnflow.services.returns.enums import ReturnStatus


class ReturnItemRequest(BaseModel):
    """One order line the customer sends back."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order_item_id: UUID = Field(..., description="Order item being returned")
    quantity: int = Field(..., ge=1, description="Units returned")
    reason: Optional[str] = Field(None, max_length=500, description="Reason for this line")


class CreateReturnRequest(BaseModel):
    """Customer request to open a return."""

    model_config = ConfigDict(str_strip_whitespace=True)

    order_id: UUID = Field(..., description="Order the goods come from")
    items: list[ReturnItemRequest] = Field(..., min_length=1)
    return_reason: Optional[str] = Field(None, max_length=500)
    customer_notes: Optional[str] = Field(None, max_length=2000)


class RejectReturnRequest(BaseModel):
    """Admin rejection of a requested return."""

    model_config = ConfigDict(str_strip_whitespace=True)

    rejection_reason: Optional[str] = Field(
        None, max_length=1000, description="Reason shown to the customer"
    )
    admin_notes: Optional[str] = Field(None, max_length=5000)


class AdminNotesRequest(BaseModel):
    """Transition body carrying optional admin notes."""

    model_config = ConfigDict(str_strip_whitespace=True)

    admin_notes: Optional[str] = Field(None, max_length=5000)


class MarkInTransitRequest(BaseModel):
    """Carrier pickup confirmation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    tracking_number: Optional[str] = Field(None, max_length=255)


class OrderItemResponse(BaseModel):
    """Order line as purchased."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    product_name: str
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    price_at_purchase: Decimal


class OrderResponse(BaseModel):
    """Order joined onto a return."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: Optional[UUID] = None
    email: str
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Decimal
    shipping_cost: Decimal
    total: Decimal
    shipping_address: Optional[dict[str, Any]] = None
    billing_address: Optional[dict[str, Any]] = None
    has_returns: bool
    created_at: datetime
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    items: list[OrderItemResponse] = Field(default_factory=list)


class ReturnItemResponse(BaseModel):
    """Returned line as stored on the return."""

    order_item_id: str
    quantity: int
    reason: Optional[str] = None


class ReturnResponse(BaseModel):
    """Return record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    user_id: Optional[UUID] = None
    status: ReturnStatus
    return_reason: Optional[str] = None
    customer_notes: Optional[str] = None
    return_items: list[ReturnItemResponse] = Field(default_factory=list)
    admin_notes: Optional[str] = None
    return_label_url: Optional[str] = None
    tracking_number: Optional[str] = None
    refund_amount: Decimal
    stripe_refund_id: Optional[str] = None
    stripe_refund_status: Optional[str] = None
    approved_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReturnWithOrderResponse(ReturnResponse):
    """Return record with its order and order items."""

    order: OrderResponse


class StatusHistoryResponse(BaseModel):
    """Status history entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: ReturnStatus
    changed_by: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class ReturnTransitionResponse(BaseModel):
    """Result of a successful return transition."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    return_: ReturnWithOrderResponse = Field(..., alias="return")


class ReturnDetailResponse(BaseModel):
    """Return with order and reverse-chronological status history."""

    model_config = ConfigDict(populate_by_name=True)

    return_: ReturnWithOrderResponse = Field(..., alias="return")
    status_history: list[StatusHistoryResponse]


class CreateReturnResponse(BaseModel):
    """Result of opening a return."""

    success: bool = True
    return_id: UUID
    status: ReturnStatus


class ReturnListResponse(BaseModel):
    """Page of returns."""

    returns: list[ReturnResponse]
    total: int
    skip: int
    limit: int


class SideEffectFailureResponse(BaseModel):
    """Side effect awaiting manual replay."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    return_id: UUID
    effect: SideEffectType
    payload: dict[str, Any]
    error: str
    created_at: datetime
    resolved_at: Optional[datetime] = None
