"""
Tests for ReturnRepository data access.
"""

from decimal import Decimal
from uuid import uuid4

from returnflow.database.models import SideEffectType
from returnflow.services.returns.enums import ReturnStatus
from returnflow.services.returns.repository import ReturnRepository


class TestReturnRepository:
    """Test repository reads and writes against SQLite."""

    async def test_create_return_writes_first_history_entry(self, factory, db_session) -> None:
        customer = await factory.create_user()
        order = await factory.create_order(user=customer)
        repository = ReturnRepository(db_session)

        created = await repository.create_return(
            order_id=order.id,
            user_id=customer.id,
            return_items=[
                {"order_item_id": str(order.items[0].id), "quantity": 1, "reason": None}
            ],
            refund_amount=Decimal("49.95"),
            return_reason="Verkeerde maat",
        )
        await repository.commit()

        history = await repository.get_status_history(created.id)
        assert len(history) == 1
        assert history[0].status is ReturnStatus.RETURN_REQUESTED
        assert history[0].changed_by == customer.id
        assert history[0].notes == "Verkeerde maat"

    async def test_history_is_newest_first(self, factory, db_session) -> None:
        order = await factory.create_order()
        created = await factory.create_return(order)
        repository = ReturnRepository(db_session)

        assert await repository.transition_status(
            created.id, {ReturnStatus.RETURN_REQUESTED}, ReturnStatus.RETURN_APPROVED
        )
        await repository.commit()
        assert await repository.transition_status(
            created.id,
            {ReturnStatus.RETURN_APPROVED},
            ReturnStatus.RETURN_LABEL_PAYMENT_PENDING,
        )
        await repository.commit()

        history = await repository.get_status_history(created.id)

        assert [entry.status for entry in history] == [
            ReturnStatus.RETURN_LABEL_PAYMENT_PENDING,
            ReturnStatus.RETURN_APPROVED,
            ReturnStatus.RETURN_REQUESTED,
        ]

    async def test_transition_status_no_match_writes_nothing(self, factory, db_session) -> None:
        order = await factory.create_order()
        created = await factory.create_return(order, status=ReturnStatus.REFUNDED)
        repository = ReturnRepository(db_session)

        applied = await repository.transition_status(
            created.id, {ReturnStatus.RETURN_REQUESTED}, ReturnStatus.RETURN_REJECTED
        )
        await repository.rollback()

        assert applied is False
        assert await repository.get_current_status(created.id) is ReturnStatus.REFUNDED
        assert len(await repository.get_status_history(created.id)) == 1

    async def test_get_return_includes_order_items(self, factory, db_session) -> None:
        order = await factory.create_order()
        created = await factory.create_return(order)
        repository = ReturnRepository(db_session)

        return_request = await repository.get_return_by_id(created.id)

        assert return_request.order.email == order.email
        assert [item.id for item in return_request.order.items] == [order.items[0].id]

    async def test_get_missing_return_returns_none(self, db_session) -> None:
        repository = ReturnRepository(db_session)

        assert await repository.get_return_by_id(uuid4()) is None
        assert await repository.get_current_status(uuid4()) is None

    async def test_find_active_return_ignores_terminal(self, factory, db_session) -> None:
        order = await factory.create_order()
        await factory.create_return(order, status=ReturnStatus.RETURN_REJECTED)
        repository = ReturnRepository(db_session)

        assert await repository.find_active_return_for_order(order.id) is None

        active = await factory.create_return(order, status=ReturnStatus.RETURN_IN_TRANSIT)
        found = await repository.find_active_return_for_order(order.id)
        assert found.id == active.id

    async def test_record_and_list_side_effect_failures(self, factory, db_session) -> None:
        order = await factory.create_order()
        created = await factory.create_return(order)
        repository = ReturnRepository(db_session)

        await repository.record_side_effect_failure(
            created.id,
            SideEffectType.ORDER_SYNC,
            payload={"return_status": "return_approved"},
            error="OrderStatusSyncError: database is locked",
        )

        failures = await repository.list_side_effect_failures(return_id=created.id)
        assert len(failures) == 1
        assert failures[0].effect is SideEffectType.ORDER_SYNC
        assert failures[0].payload == {"return_status": "return_approved"}
