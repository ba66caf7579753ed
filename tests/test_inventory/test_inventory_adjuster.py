"""
Tests for atomic stock increments.
"""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from returnflow.database.models import ProductVariant
from returnflow.services.inventory.adjuster import InventoryAdjuster


class TestInventoryAdjuster:
    """Test InventoryAdjuster.increment_stock."""

    async def test_increment_adds_quantity(self, factory, db_session, check_session) -> None:
        variant = await factory.create_variant(stock_quantity=5)
        adjuster = InventoryAdjuster(db_session)

        assert await adjuster.increment_stock(variant.id, 2) is True
        await db_session.commit()

        stored = await check_session.get(ProductVariant, variant.id)
        assert stored.stock_quantity == 7

    async def test_concurrent_increments_are_not_lost(
        self,
        factory,
        session_factory: async_sessionmaker[AsyncSession],
        check_session,
    ) -> None:
        variant = await factory.create_variant(stock_quantity=5)

        async def restock(quantity: int) -> bool:
            async with session_factory() as session:
                updated = await InventoryAdjuster(session).increment_stock(variant.id, quantity)
                await session.commit()
                return updated

        results = await asyncio.gather(restock(2), restock(3))

        assert results == [True, True]
        stored = await check_session.get(ProductVariant, variant.id)
        assert stored.stock_quantity == 10

    @pytest.mark.parametrize("quantity", [0, -1])
    async def test_non_positive_quantity_is_rejected(self, db_session, quantity: int) -> None:
        adjuster = InventoryAdjuster(db_session)

        with pytest.raises(ValueError, match="must be positive"):
            await adjuster.increment_stock(uuid4(), quantity)

    async def test_unknown_variant_returns_false(self, db_session) -> None:
        adjuster = InventoryAdjuster(db_session)

        assert await adjuster.increment_stock(uuid4(), 1) is False
