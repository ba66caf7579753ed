"""
Order status synchronization for return progress.

The parent order's visible status mirrors the progress of its return. The
mapping below covers every ``ReturnStatus`` member; adding a member without
deciding its order status makes this module fail to import.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from returnflow.core.logging import get_logger
from returnflow.database.models.order import Order, OrderStatus
from returnflow.services.returns.enums import ReturnStatus

logger = get_logger(__name__)


class OrderStatusSyncError(Exception):
    """Raised when the order status could not be written."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


RETURN_TO_ORDER_STATUS: Mapping[ReturnStatus, OrderStatus] = {
    ReturnStatus.RETURN_REQUESTED: OrderStatus.RETURN_REQUESTED,
    ReturnStatus.RETURN_APPROVED: OrderStatus.RETURN_REQUESTED,
    ReturnStatus.RETURN_LABEL_PAYMENT_PENDING: OrderStatus.RETURN_REQUESTED,
    ReturnStatus.RETURN_LABEL_PAYMENT_COMPLETED: OrderStatus.RETURN_REQUESTED,
    ReturnStatus.RETURN_LABEL_GENERATED: OrderStatus.RETURN_REQUESTED,
    ReturnStatus.RETURN_IN_TRANSIT: OrderStatus.RETURN_IN_TRANSIT,
    ReturnStatus.RETURN_RECEIVED: OrderStatus.RETURN_RECEIVED,
    ReturnStatus.REFUND_PROCESSING: OrderStatus.RETURN_RECEIVED,
    ReturnStatus.REFUNDED: OrderStatus.RETURN_COMPLETED,
    # A rejected return puts the order back in its pre-return state.
    ReturnStatus.RETURN_REJECTED: OrderStatus.DELIVERED,
}


def assert_mapping_complete(mapping: Mapping[ReturnStatus, OrderStatus]) -> None:
    """
    Ensure every return status has an order status.

    Raises:
        ValueError: Naming the return statuses without a mapping
    """
    missing = [status.value for status in ReturnStatus if status not in mapping]
    if missing:
        raise ValueError(
            "Return statuses without an order status mapping: " + ", ".join(missing)
        )


assert_mapping_complete(RETURN_TO_ORDER_STATUS)


def map_return_to_order_status(
    return_status: Union[ReturnStatus, str],
) -> Optional[OrderStatus]:
    """
    Map a return status to the order status it implies.

    Args:
        return_status: Return status, or its raw string value

    Returns:
        Order status, None for a raw value that is not a known return status
    """
    if not isinstance(return_status, ReturnStatus):
        try:
            return_status = ReturnStatus(return_status)
        except ValueError:
            logger.warning(
                "No order status mapping for return status",
                return_status=str(return_status),
            )
            return None
    return RETURN_TO_ORDER_STATUS[return_status]


class OrderStatusSynchronizer:
    """
    Writes the order status implied by a return status.

    Persistence errors are raised to the caller, which decides whether they
    are fatal.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def sync(
        self,
        order_id: uuid.UUID,
        return_status: Union[ReturnStatus, str],
    ) -> Union[OrderStatus, bool, None]:
        """
        Update the order to mirror the given return status.

        Args:
            order_id: Order to update
            return_status: Status the order's return just entered

        Returns:
            The order status written, False when the order does not exist,
            None when the return status maps to no order status

        Raises:
            OrderStatusSyncError: If the update fails
        """
        order_status = map_return_to_order_status(return_status)
        if order_status is None:
            return None

        try:
            result = await self.session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(status=order_status, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order status sync failed",
                order_id=str(order_id),
                order_status=order_status.value,
                error=str(e),
            )
            raise OrderStatusSyncError(
                "Failed to update order status",
                order_id=str(order_id),
                order_status=order_status.value,
                error=str(e),
            ) from e

        if result.rowcount == 0:
            logger.warning("Order status sync found no order", order_id=str(order_id))
            return False

        logger.info(
            "Order status synchronized",
            order_id=str(order_id),
            order_status=order_status.value,
        )
        return order_status
