"""
Product variant model holding per-SKU stock counters.

Variants are owned by the catalog; the return subsystem only ever increments
``stock_quantity``.
"""

import uuid
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from returnflow.database.base import BaseModel


class ProductVariant(BaseModel):
    """
    Purchasable configuration (size/colour) of a product.

    Attributes:
        id: Unique variant identifier (UUID)
        product_id: Owning product identifier
        sku: Stock keeping unit
        size: Optional size label
        color: Optional colour label
        stock_quantity: Units on hand
        is_available: Whether the variant is offered for sale
    """

    __tablename__ = "product_variants"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Owning product identifier",
    )

    sku: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Stock keeping unit",
    )

    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    stock_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units on hand",
    )

    is_available: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the variant is offered for sale",
    )

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="check_stock_non_negative"),
    )
