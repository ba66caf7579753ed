"""
Inventory adjustments for returned goods.

Restocking is a single server-side ``UPDATE ... SET stock_quantity =
stock_quantity + :quantity`` so concurrent restocks of the same variant never
lose an increment.
"""

import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from returnflow.core.logging import get_logger
from returnflow.database.models.inventory import ProductVariant

logger = get_logger(__name__)


class InventoryAdjustmentError(Exception):
    """Raised when a stock adjustment cannot be written."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InventoryAdjuster:
    """Applies atomic stock increments to product variants."""

    def __init__(self, session: AsyncSession):
        """
        Initialize inventory adjuster.

        Args:
            session: Async database session; the caller owns the transaction
        """
        self.session = session

    async def increment_stock(self, variant_id: uuid.UUID, quantity: int) -> bool:
        """
        Add returned units to a variant's stock.

        Args:
            variant_id: Variant to restock
            quantity: Units to add, must be positive

        Returns:
            True if the variant was updated, False if it does not exist

        Raises:
            ValueError: If quantity is not positive
            InventoryAdjustmentError: If the update fails
        """
        if quantity <= 0:
            raise ValueError(f"Restock quantity must be positive, got {quantity}")

        try:
            result = await self.session.execute(
                update(ProductVariant)
                .where(ProductVariant.id == variant_id)
                .values(stock_quantity=ProductVariant.stock_quantity + quantity)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(
                "Stock increment failed",
                variant_id=str(variant_id),
                quantity=quantity,
                error=str(e),
            )
            raise InventoryAdjustmentError(
                "Failed to increment stock",
                variant_id=str(variant_id),
                quantity=quantity,
                error=str(e),
            ) from e

        if result.rowcount == 0:
            logger.warning(
                "Stock increment skipped - variant not found",
                variant_id=str(variant_id),
                quantity=quantity,
            )
            return False

        logger.info(
            "Stock incremented",
            variant_id=str(variant_id),
            quantity=quantity,
        )
        return True
