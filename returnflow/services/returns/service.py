"""
Return service orchestrating the return lifecycle.

Every operation follows the same order: load the return, check the status
precondition, commit the conditional status write with its history entry and
only then run side effects (restock, order status sync, customer email).
Side effects are best-effort: a failure is logged with full context, recorded
in the side effect failure log for manual replay and never turns the
committed transition into a reported failure.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from returnflow.core.config import Settings, get_settings
from returnflow.core.logging import get_logger
from returnflow.database.models.order import Order, OrderStatus
from returnflow.database.models.return_request import (
    Return,
    ReturnSideEffectFailure,
    ReturnStatusHistory,
    SideEffectType,
)
from returnflow.database.models.user import User
from returnflow.services.carrier.client import CarrierLabelGateway, LabelDocument
from returnflow.services.inventory.adjuster import InventoryAdjuster
from returnflow.services.notifications.service import NotificationDispatcher
from returnflow.services.orders.status_sync import OrderStatusSynchronizer
from returnflow.services.payments.stripe_client import StripeClient
from returnflow.services.returns.enums import ReturnStatus
from returnflow.services.returns.repository import (
    ReturnNotFoundError,
    ReturnPersistenceError,
    ReturnRepository,
)
from returnflow.services.returns.state_machine import ReturnStateMachine

logger = get_logger(__name__)


class ReturnServiceError(Exception):
    """Base exception for return service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ReturnValidationError(ReturnServiceError):
    """Raised when request input is missing or not acceptable."""

    pass


class ReturnAccessDeniedError(ReturnServiceError):
    """Raised when the requester may not see or change a return."""

    pass


@dataclass(frozen=True)
class _SideEffectContext:
    """Values captured after commit so side effects never touch expired rows."""

    return_id: uuid.UUID
    order_id: uuid.UUID
    customer_email: str
    customer_name: Optional[str]
    refund_amount: Decimal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ReturnService:
    """
    Return service orchestrating business logic and integrations.

    Integrations not passed in are built from settings on first use, so an
    operation that needs no carrier or payment provider never requires its
    credentials.

    Attributes:
        repository: Return repository for data access
        state_machine: State machine applying conditional transitions
        order_sync: Order status synchronizer
        inventory: Inventory adjuster used for restocking
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        notifications: Optional[NotificationDispatcher] = None,
        carrier: Optional[CarrierLabelGateway] = None,
        payments: Optional[StripeClient] = None,
    ):
        """
        Initialize return service.

        Args:
            session: Async database session
            settings: Application settings (defaults to cached settings)
            notifications: Notification dispatcher
            carrier: Carrier label gateway
            payments: Stripe client used for refunds
        """
        self.session = session
        self.settings = settings or get_settings()
        self.repository = ReturnRepository(session)
        self.state_machine = ReturnStateMachine(self.repository)
        self.order_sync = OrderStatusSynchronizer(session)
        self.inventory = InventoryAdjuster(session)
        self._notifications = notifications
        self._carrier = carrier
        self._payments = payments

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    @property
    def notifications(self) -> NotificationDispatcher:
        if self._notifications is None:
            self._notifications = NotificationDispatcher.from_settings(self.settings)
        return self._notifications

    @property
    def carrier(self) -> CarrierLabelGateway:
        if self._carrier is None:
            self._carrier = CarrierLabelGateway.from_settings(self.settings)
        return self._carrier

    @property
    def payments(self) -> StripeClient:
        if self._payments is None:
            self._payments = StripeClient.from_settings(self.settings)
        return self._payments

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, return_id: uuid.UUID) -> Return:
        return_request = await self.repository.get_return_by_id(return_id)
        if return_request is None:
            raise ReturnNotFoundError("Return not found", return_id=str(return_id))
        return return_request

    @staticmethod
    def _owns_order(order: Order, user: User) -> bool:
        if order.user_id is not None:
            return order.user_id == user.id
        return bool(order.email) and order.email.lower() == user.email.lower()

    def _ensure_can_access(self, order: Order, user: User) -> None:
        if user.is_admin or self._owns_order(order, user):
            return
        logger.warning(
            "Return access denied",
            user_id=str(user.id),
            order_id=str(order.id),
        )
        raise ReturnAccessDeniedError(
            "Not authorized to access this return",
            user_id=str(user.id),
            order_id=str(order.id),
        )

    @staticmethod
    def _side_effect_context(return_request: Return) -> _SideEffectContext:
        order = return_request.order
        return _SideEffectContext(
            return_id=return_request.id,
            order_id=order.id,
            customer_email=order.email,
            customer_name=order.customer_name,
            refund_amount=return_request.refund_amount,
        )

    async def _run_side_effect(
        self,
        ctx: _SideEffectContext,
        effect: SideEffectType,
        payload: dict[str, Any],
        action: Callable[[], Awaitable[Any]],
    ) -> bool:
        """
        Run one side effect in its own transaction.

        The action fails when it raises or returns ``False``. Failures are
        rolled back, logged and recorded for replay.
        """
        try:
            result = await action()
            if result is False:
                raise RuntimeError(f"{effect.value} side effect reported failure")
            await self.session.commit()
            return True
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            await self.session.rollback()
            logger.error(
                "Return side effect failed",
                side_effect=effect.value,
                return_id=str(ctx.return_id),
                order_id=str(ctx.order_id),
                error=error,
                **payload,
            )

        try:
            await self.repository.record_side_effect_failure(
                ctx.return_id,
                effect,
                payload={"order_id": str(ctx.order_id), **payload},
                error=error,
            )
        except ReturnPersistenceError as record_error:
            logger.error(
                "Could not record side effect failure",
                side_effect=effect.value,
                return_id=str(ctx.return_id),
                error=str(record_error),
            )
        return False

    async def _sync_order(self, ctx: _SideEffectContext, status: ReturnStatus) -> bool:
        return await self._run_side_effect(
            ctx,
            SideEffectType.ORDER_SYNC,
            {"return_status": status.value},
            lambda: self.order_sync.sync(ctx.order_id, status),
        )

    async def _restock(self, ctx: _SideEffectContext, return_request: Return) -> None:
        order_items = {str(item.id): item for item in return_request.order.items}
        restocks = []
        for line in return_request.return_items:
            order_item = order_items.get(str(line.get("order_item_id")))
            if order_item is None or order_item.variant_id is None:
                logger.debug(
                    "Return line has no variant to restock",
                    return_id=str(ctx.return_id),
                    order_item_id=line.get("order_item_id"),
                )
                continue
            restocks.append((order_item.variant_id, int(line["quantity"]), order_item.id))

        for variant_id, quantity, order_item_id in restocks:
            await self._run_side_effect(
                ctx,
                SideEffectType.RESTOCK,
                {
                    "variant_id": str(variant_id),
                    "quantity": quantity,
                    "order_item_id": str(order_item_id),
                },
                lambda variant_id=variant_id, quantity=quantity: (
                    self.inventory.increment_stock(variant_id, quantity)
                ),
            )

    async def _notify(
        self,
        ctx: _SideEffectContext,
        email: str,
        send: Callable[[], Awaitable[bool]],
    ) -> bool:
        return await self._run_side_effect(
            ctx,
            SideEffectType.NOTIFICATION,
            {"email": email, "recipient": ctx.customer_email},
            send,
        )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_return(
        self, return_id: uuid.UUID, user: User
    ) -> tuple[Return, Sequence[ReturnStatusHistory]]:
        """
        Fetch a return with its order and status history.

        Args:
            return_id: Return identifier
            user: Requesting user

        Returns:
            Tuple of (return with order and items, history newest first)

        Raises:
            ReturnNotFoundError: If the return does not exist
            ReturnAccessDeniedError: If the user neither owns the order nor is
                an admin
        """
        return_request = await self._load(return_id)
        self._ensure_can_access(return_request.order, user)
        history = await self.repository.get_status_history(return_id)
        return return_request, history

    async def list_returns(
        self,
        user: User,
        status: Optional[ReturnStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[Return], int]:
        """List returns visible to the user, newest first."""
        return await self.repository.list_returns(
            user_id=None if user.is_admin else user.id,
            status=status,
            skip=skip,
            limit=limit,
        )

    async def download_label(self, return_id: uuid.UUID, user: User) -> LabelDocument:
        """
        Fetch the return label document through the carrier.

        Raises:
            ReturnNotFoundError: If the return or its label does not exist
            ReturnAccessDeniedError: If the user may not see the return
            CarrierError: If the carrier is not configured or fails
        """
        return_request = await self._load(return_id)
        self._ensure_can_access(return_request.order, user)

        if not return_request.return_label_url:
            raise ReturnNotFoundError(
                "Return label is not available yet",
                return_id=str(return_id),
            )

        return await self.carrier.fetch_label(return_request.return_label_url)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def request_return(
        self,
        order_id: uuid.UUID,
        user: User,
        items: Sequence[dict[str, Any]],
        return_reason: Optional[str] = None,
        customer_notes: Optional[str] = None,
    ) -> Return:
        """
        Open a return for a delivered order.

        Args:
            order_id: Order the goods come from
            user: Requesting user
            items: Lines of ``{"order_item_id", "quantity", "reason"}``
            return_reason: Overall return reason
            customer_notes: Free text from the customer

        Returns:
            The created return in ``return_requested``

        Raises:
            ReturnNotFoundError: If the order does not exist
            ReturnAccessDeniedError: If the user does not own the order
            ReturnValidationError: If the order or the lines are not returnable
        """
        order = await self.repository.get_order_with_items(order_id)
        if order is None:
            raise ReturnNotFoundError("Order not found", order_id=str(order_id))
        self._ensure_can_access(order, user)

        if order.status != OrderStatus.DELIVERED:
            raise ReturnValidationError(
                "Only delivered orders can be returned, "
                f"current order status: {order.status.value}",
                order_id=str(order_id),
            )

        if order.delivered_at is not None:
            deadline = _as_aware(order.delivered_at) + timedelta(
                days=self.settings.return_window_days
            )
            if _utcnow() > deadline:
                raise ReturnValidationError(
                    f"The return period of {self.settings.return_window_days} days "
                    "has expired",
                    order_id=str(order_id),
                )

        if not items:
            raise ReturnValidationError(
                "At least one item must be returned", order_id=str(order_id)
            )

        order_items = {str(item.id): item for item in order.items}
        lines: list[dict[str, Any]] = []
        refund_amount = Decimal("0.00")
        for entry in items:
            order_item_id = str(entry.get("order_item_id"))
            order_item = order_items.get(order_item_id)
            if order_item is None:
                raise ReturnValidationError(
                    "Item does not belong to this order",
                    order_id=str(order_id),
                    order_item_id=order_item_id,
                )
            if any(line["order_item_id"] == order_item_id for line in lines):
                raise ReturnValidationError(
                    "Item listed more than once",
                    order_item_id=order_item_id,
                )

            quantity = int(entry.get("quantity", 0))
            if quantity < 1 or quantity > order_item.quantity:
                raise ReturnValidationError(
                    f"Quantity must be between 1 and {order_item.quantity}",
                    order_item_id=order_item_id,
                    quantity=quantity,
                )

            refund_amount += order_item.price_at_purchase * quantity
            lines.append(
                {
                    "order_item_id": order_item_id,
                    "quantity": quantity,
                    "reason": entry.get("reason"),
                }
            )

        if await self.repository.find_active_return_for_order(order.id) is not None:
            raise ReturnValidationError(
                "This order already has an open return", order_id=str(order_id)
            )

        return_request = await self.repository.create_return(
            order_id=order.id,
            user_id=user.id,
            return_items=lines,
            refund_amount=refund_amount.quantize(Decimal("0.01")),
            return_reason=return_reason,
            customer_notes=customer_notes,
        )
        return_id = return_request.id
        await self.repository.mark_order_has_returns(order.id)
        await self.repository.commit()

        logger.info(
            "Return requested",
            return_id=str(return_id),
            order_id=str(order_id),
            refund_amount=str(refund_amount),
        )

        return_request = await self._load(return_id)
        await self._sync_order(
            self._side_effect_context(return_request), ReturnStatus.RETURN_REQUESTED
        )
        return await self._load(return_id)

    async def approve(
        self,
        return_id: uuid.UUID,
        admin_notes: Optional[str] = None,
        changed_by: Optional[uuid.UUID] = None,
    ) -> Return:
        """
        Approve a requested return.

        ``admin_notes`` replaces the stored notes only when supplied.

        Raises:
            ReturnNotFoundError: If the return does not exist
            InvalidStateTransitionError: If the return is not requested
        """
        return_request = await self._load(return_id)

        values: dict[str, Any] = {"approved_at": _utcnow()}
        if admin_notes:
            values["admin_notes"] = admin_notes

        await self.state_machine.apply_transition(
            return_request,
            ReturnStatus.RETURN_APPROVED,
            allowed_from={ReturnStatus.RETURN_REQUESTED},
            changed_by=changed_by,
            notes=admin_notes,
            **values,
        )

        return_request = await self._load(return_id)
        ctx = self._side_effect_context(return_request)
        await self._sync_order(ctx, ReturnStatus.RETURN_APPROVED)
        await self._notify(
            ctx,
            "return_approved",
            lambda: self.notifications.send_approval_email(
                customer_email=ctx.customer_email,
                customer_name=ctx.customer_name,
                return_id=ctx.return_id,
                order_id=ctx.order_id,
                refund_amount=ctx.refund_amount,
            ),
        )
        return await self._load(return_id)

    async def reject(
        self,
        return_id: uuid.UUID,
        rejection_reason: Optional[str],
        admin_notes: Optional[str] = None,
        changed_by: Optional[uuid.UUID] = None,
    ) -> Return:
        """
        Reject a requested return.

        The stored admin notes become the rejection reason, a blank line and
        the supplied notes.

        Args:
            return_id: Return identifier
            rejection_reason: Reason shown to the customer, required
            admin_notes: Optional internal notes
            changed_by: Admin rejecting the return

        Returns:
            The rejected return

        Raises:
            ReturnValidationError: If no rejection reason is given
            ReturnNotFoundError: If the return does not exist
            InvalidStateTransitionError: If the return is not requested
        """
        if not rejection_reason or not rejection_reason.strip():
            raise ReturnValidationError(
                "Rejection reason is required", return_id=str(return_id)
            )

        return_request = await self._load(return_id)

        await self.state_machine.apply_transition(
            return_request,
            ReturnStatus.RETURN_REJECTED,
            allowed_from={ReturnStatus.RETURN_REQUESTED},
            changed_by=changed_by,
            notes=rejection_reason,
            admin_notes=f"{rejection_reason}\n\n{admin_notes or ''}".strip(),
        )

        return_request = await self._load(return_id)
        ctx = self._side_effect_context(return_request)
        await self._sync_order(ctx, ReturnStatus.RETURN_REJECTED)
        await self._notify(
            ctx,
            "return_rejected",
            lambda: self.notifications.send_rejection_email(
                customer_email=ctx.customer_email,
                customer_name=ctx.customer_name,
                return_id=ctx.return_id,
                order_id=ctx.order_id,
                reason=rejection_reason,
            ),
        )
        return await self._load(return_id)

    async def mark_in_transit(
        self,
        return_id: uuid.UUID,
        tracking_number: Optional[str] = None,
        changed_by: Optional[uuid.UUID] = None,
    ) -> Return:
        """Record that the carrier picked up the return parcel."""
        return_request = await self._load(return_id)

        values: dict[str, Any] = {}
        if tracking_number:
            values["tracking_number"] = tracking_number

        await self.state_machine.apply_transition(
            return_request,
            ReturnStatus.RETURN_IN_TRANSIT,
            allowed_from={ReturnStatus.RETURN_LABEL_GENERATED},
            changed_by=changed_by,
            notes=f"Tracking number {tracking_number}" if tracking_number else None,
            **values,
        )

        return_request = await self._load(return_id)
        await self._sync_order(
            self._side_effect_context(return_request), ReturnStatus.RETURN_IN_TRANSIT
        )
        return await self._load(return_id)

    async def confirm_received(
        self,
        return_id: uuid.UUID,
        admin_notes: Optional[str] = None,
        changed_by: Optional[uuid.UUID] = None,
    ) -> Return:
        """
        Confirm the returned goods arrived and restock them.

        The status write is committed before any variant is restocked; each
        returned line is restocked in its own transaction.

        Raises:
            ReturnNotFoundError: If the return does not exist
            InvalidStateTransitionError: If the return is not in transit or
                waiting with a generated label
        """
        return_request = await self._load(return_id)

        values: dict[str, Any] = {"received_at": _utcnow()}
        if admin_notes:
            values["admin_notes"] = admin_notes

        await self.state_machine.apply_transition(
            return_request,
            ReturnStatus.RETURN_RECEIVED,
            allowed_from={
                ReturnStatus.RETURN_IN_TRANSIT,
                ReturnStatus.RETURN_LABEL_GENERATED,
            },
            changed_by=changed_by,
            notes=admin_notes,
            **values,
        )

        return_request = await self._load(return_id)
        ctx = self._side_effect_context(return_request)
        await self._restock(ctx, return_request)
        await self._sync_order(ctx, ReturnStatus.RETURN_RECEIVED)
        return await self._load(return_id)

    async def process_refund(
        self,
        return_id: uuid.UUID,
        admin_notes: Optional[str] = None,
        changed_by: Optional[uuid.UUID] = None,
    ) -> Return:
        """
        Refund a received return through Stripe.

        The return moves to ``refund_processing`` with the refund stored. When
        Stripe reports the refund succeeded it moves on to ``refunded`` and
        the customer is emailed.

        Raises:
            ReturnNotFoundError: If the return does not exist
            InvalidStateTransitionError: If the return is not received
            ReturnValidationError: If there is nothing to refund or no
                payment to refund against
            StripeClientError: If Stripe is not configured or refuses
        """
        return_request = await self._load(return_id)
        self.state_machine.validate_transition(
            return_request, ReturnStatus.REFUND_PROCESSING
        )

        if return_request.stripe_refund_id:
            raise ReturnValidationError(
                "Refund already processed",
                return_id=str(return_id),
                stripe_refund_id=return_request.stripe_refund_id,
            )
        order = return_request.order
        if not order.stripe_payment_intent_id:
            raise ReturnValidationError(
                "Order has no payment intent", order_id=str(order.id)
            )
        refund_amount = return_request.refund_amount or Decimal("0")
        if refund_amount <= 0:
            raise ReturnValidationError(
                "Refund amount must be greater than 0", return_id=str(return_id)
            )

        refund = await asyncio.to_thread(
            self.payments.create_refund,
            payment_intent_id=order.stripe_payment_intent_id,
            amount=refund_amount,
            return_id=return_request.id,
            order_id=order.id,
        )

        values: dict[str, Any] = {
            "stripe_refund_id": refund.id,
            "stripe_refund_status": refund.status,
        }
        if admin_notes:
            values["admin_notes"] = admin_notes

        await self.state_machine.apply_transition(
            return_request,
            ReturnStatus.REFUND_PROCESSING,
            changed_by=changed_by,
            notes=f"Stripe refund {refund.id}",
            **values,
        )

        return_request = await self._load(return_id)
        ctx = self._side_effect_context(return_request)
        await self._sync_order(ctx, ReturnStatus.REFUND_PROCESSING)
        return_request = await self._load(return_id)

        if refund.status != "succeeded":
            logger.info(
                "Refund pending at Stripe",
                return_id=str(return_id),
                refund_id=refund.id,
                refund_status=refund.status,
            )
            return return_request

        await self.state_machine.apply_transition(
            return_request,
            ReturnStatus.REFUNDED,
            changed_by=changed_by,
            notes=f"Stripe refund {refund.id} succeeded",
            refunded_at=_utcnow(),
            stripe_refund_status="succeeded",
        )

        await self._sync_order(ctx, ReturnStatus.REFUNDED)
        await self._notify(
            ctx,
            "return_refunded",
            lambda: self.notifications.send_refund_email(
                customer_email=ctx.customer_email,
                customer_name=ctx.customer_name,
                return_id=ctx.return_id,
                order_id=ctx.order_id,
                refund_amount=ctx.refund_amount,
            ),
        )
        return await self._load(return_id)

    # ------------------------------------------------------------------
    # Side effect failure log
    # ------------------------------------------------------------------

    async def list_side_effect_failures(
        self,
        return_id: Optional[uuid.UUID] = None,
        include_resolved: bool = False,
    ) -> Sequence[ReturnSideEffectFailure]:
        """List recorded side effect failures awaiting manual replay."""
        return await self.repository.list_side_effect_failures(
            return_id=return_id, include_resolved=include_resolved
        )

    async def resolve_side_effect_failure(
        self, failure_id: uuid.UUID
    ) -> ReturnSideEffectFailure:
        """Mark a side effect failure as handled by an operator."""
        failure = await self.repository.resolve_side_effect_failure(failure_id)
        await self.repository.commit()
        logger.info(
            "Side effect failure resolved",
            failure_id=str(failure_id),
            return_id=str(failure.return_id),
            side_effect=failure.effect.value,
        )
        return failure
