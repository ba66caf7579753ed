"""
Return data access repository.

This module implements the ReturnRepository class providing async methods for
reading returns with their order and status history, applying conditional
status writes, appending history entries and recording side effects that
failed after a transition was committed.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from returnflow.core.logging import get_logger
from returnflow.database.models.order import Order
from returnflow.database.models.return_request import (
    Return,
    ReturnSideEffectFailure,
    ReturnStatusHistory,
    SideEffectType,
)
from returnflow.services.returns.enums import ACTIVE_RETURN_STATUSES, ReturnStatus

logger = get_logger(__name__)


class ReturnRepositoryError(Exception):
    """Base exception for return repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ReturnNotFoundError(ReturnRepositoryError):
    """Raised when a return (or the order it refers to) does not exist."""

    pass


class ReturnPersistenceError(ReturnRepositoryError):
    """Raised when a datastore read or write fails."""

    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReturnRepository:
    """
    Repository for return data access operations.

    The repository never commits on its own; callers decide transaction
    boundaries through ``commit`` and ``rollback``.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize return repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            ReturnPersistenceError: If the commit fails
        """
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Return transaction commit failed", error=str(e))
            raise ReturnPersistenceError(
                "Failed to commit return changes", error=str(e)
            ) from e

    async def rollback(self) -> None:
        """Roll back the current transaction."""
        await self.session.rollback()

    async def get_return_by_id(
        self,
        return_id: uuid.UUID,
        include_order: bool = True,
        include_history: bool = False,
    ) -> Optional[Return]:
        """
        Get return by ID with optional relationships.

        Rows already present in the session are refreshed so that values
        written through conditional updates are visible.

        Args:
            return_id: Return identifier
            include_order: Whether to load the order and its items
            include_history: Whether to load the status history

        Returns:
            Return if found, None otherwise

        Raises:
            ReturnPersistenceError: If query fails
        """
        try:
            stmt = select(Return).where(Return.id == return_id)

            options = []
            if include_order:
                options.append(selectinload(Return.order).selectinload(Order.items))
            if include_history:
                options.append(selectinload(Return.status_history))
            if options:
                stmt = stmt.options(*options)

            stmt = stmt.execution_options(populate_existing=True)

            result = await self.session.execute(stmt)
            return_request = result.scalar_one_or_none()

            logger.debug(
                "Return fetched",
                return_id=str(return_id),
                found=return_request is not None,
            )
            return return_request

        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch return",
                return_id=str(return_id),
                error=str(e),
            )
            raise ReturnPersistenceError(
                "Failed to fetch return",
                return_id=str(return_id),
                error=str(e),
            ) from e

    async def get_current_status(self, return_id: uuid.UUID) -> Optional[ReturnStatus]:
        """
        Read the stored status of a return straight from the database.

        Returns:
            Current status, None if the return does not exist
        """
        try:
            result = await self.session.execute(
                select(Return.status).where(Return.id == return_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise ReturnPersistenceError(
                "Failed to read return status",
                return_id=str(return_id),
                error=str(e),
            ) from e

    async def get_status_history(
        self, return_id: uuid.UUID
    ) -> Sequence[ReturnStatusHistory]:
        """
        Get the status history of a return, newest entry first.

        Args:
            return_id: Return identifier

        Returns:
            History entries in reverse chronological order

        Raises:
            ReturnPersistenceError: If query fails
        """
        try:
            stmt = (
                select(ReturnStatusHistory)
                .where(ReturnStatusHistory.return_id == return_id)
                .order_by(ReturnStatusHistory.created_at.desc())
            )
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to fetch return status history",
                return_id=str(return_id),
                error=str(e),
            )
            raise ReturnPersistenceError(
                "Failed to fetch return status history",
                return_id=str(return_id),
                error=str(e),
            ) from e

    async def transition_status(
        self,
        return_id: uuid.UUID,
        expected: Iterable[ReturnStatus],
        new_status: ReturnStatus,
        changed_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        **values: Any,
    ) -> bool:
        """
        Conditionally move a return to a new status.

        Issues ``UPDATE returns SET status = :new ... WHERE id = :id AND
        status IN (:expected)`` and appends a history entry when a row was
        updated.

        Args:
            return_id: Return identifier
            expected: Statuses the return must currently be in
            new_status: Status to move to
            changed_by: User triggering the change
            notes: Optional note stored on the history entry
            **values: Additional columns written in the same statement

        Returns:
            True if the row was updated, False if its status did not match

        Raises:
            ReturnPersistenceError: If the update fails
        """
        expected_statuses = list(expected)

        try:
            stmt = (
                update(Return)
                .where(
                    and_(
                        Return.id == return_id,
                        Return.status.in_(expected_statuses),
                    )
                )
                .values(status=new_status, updated_at=_utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                logger.info(
                    "Conditional return status write matched no row",
                    return_id=str(return_id),
                    expected=[status.value for status in expected_statuses],
                    new_status=new_status.value,
                )
                return False

            await self.add_status_history(
                return_id, new_status, changed_by=changed_by, notes=notes
            )

            logger.info(
                "Return status updated",
                return_id=str(return_id),
                new_status=new_status.value,
            )
            return True

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to update return status",
                return_id=str(return_id),
                new_status=new_status.value,
                error=str(e),
            )
            raise ReturnPersistenceError(
                "Failed to update return status",
                return_id=str(return_id),
                error=str(e),
            ) from e

    async def add_status_history(
        self,
        return_id: uuid.UUID,
        status: ReturnStatus,
        changed_by: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> ReturnStatusHistory:
        """Append a status history entry and flush it."""
        entry = ReturnStatusHistory(
            return_id=return_id,
            status=status,
            changed_by=changed_by,
            notes=notes,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def create_return(
        self,
        order_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
        return_items: list[dict[str, Any]],
        refund_amount: Decimal,
        return_reason: Optional[str] = None,
        customer_notes: Optional[str] = None,
    ) -> Return:
        """
        Create a return in ``return_requested`` with its first history entry.

        Raises:
            ReturnPersistenceError: If the insert fails
        """
        try:
            return_request = Return(
                order_id=order_id,
                user_id=user_id,
                status=ReturnStatus.RETURN_REQUESTED,
                return_items=return_items,
                refund_amount=refund_amount,
                return_reason=return_reason,
                customer_notes=customer_notes,
            )
            self.session.add(return_request)
            await self.session.flush()

            await self.add_status_history(
                return_request.id,
                ReturnStatus.RETURN_REQUESTED,
                changed_by=user_id,
                notes=return_reason,
            )

            logger.info(
                "Return created",
                return_id=str(return_request.id),
                order_id=str(order_id),
                item_count=len(return_items),
            )
            return return_request

        except IntegrityError as e:
            await self.session.rollback()
            logger.error(
                "Return creation failed - integrity error",
                order_id=str(order_id),
                error=str(e),
            )
            raise ReturnPersistenceError(
                "Return creation failed due to data integrity violation",
                order_id=str(order_id),
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Return creation failed - database error",
                order_id=str(order_id),
                error=str(e),
            )
            raise ReturnPersistenceError(
                "Return creation failed due to database error",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def find_active_return_for_order(
        self, order_id: uuid.UUID
    ) -> Optional[Return]:
        """Get the open (non-terminal) return of an order, if any."""
        try:
            stmt = (
                select(Return)
                .where(
                    and_(
                        Return.order_id == order_id,
                        Return.status.in_(list(ACTIVE_RETURN_STATUSES)),
                    )
                )
                .limit(1)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise ReturnPersistenceError(
                "Failed to look up active return",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def list_returns(
        self,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[ReturnStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[Return], int]:
        """
        List returns, newest first.

        Args:
            user_id: Restrict to returns requested by this user
            status: Optional status filter
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (returns, total_count)

        Raises:
            ReturnPersistenceError: If query fails
        """
        try:
            conditions = []
            if user_id is not None:
                conditions.append(Return.user_id == user_id)
            if status is not None:
                conditions.append(Return.status == status)

            stmt = (
                select(Return)
                .where(*conditions)
                .order_by(Return.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            count_stmt = (
                select(func.count()).select_from(Return).where(*conditions)
            )

            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)

            returns = result.scalars().all()
            total_count = count_result.scalar_one()

            logger.debug(
                "Returns listed",
                user_id=str(user_id) if user_id else None,
                status=status.value if status else None,
                count=len(returns),
                total=total_count,
            )
            return returns, total_count

        except SQLAlchemyError as e:
            logger.error("Failed to list returns", error=str(e))
            raise ReturnPersistenceError(
                "Failed to list returns", error=str(e)
            ) from e

    async def get_order_with_items(self, order_id: uuid.UUID) -> Optional[Order]:
        """Get an order with its items loaded."""
        try:
            stmt = (
                select(Order)
                .where(Order.id == order_id)
                .options(selectinload(Order.items))
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise ReturnPersistenceError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def mark_order_has_returns(self, order_id: uuid.UUID) -> None:
        """Flag an order as having had a return opened against it."""
        try:
            await self.session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(has_returns=True, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise ReturnPersistenceError(
                "Failed to flag order as having returns",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def record_side_effect_failure(
        self,
        return_id: uuid.UUID,
        effect: SideEffectType,
        payload: dict[str, Any],
        error: str,
    ) -> ReturnSideEffectFailure:
        """
        Persist a failed side effect for manual replay and commit it.

        Raises:
            ReturnPersistenceError: If the entry cannot be written
        """
        try:
            failure = ReturnSideEffectFailure(
                return_id=return_id,
                effect=effect,
                payload=payload,
                error=error,
            )
            self.session.add(failure)
            await self.session.commit()
            return failure
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise ReturnPersistenceError(
                "Failed to record side effect failure",
                return_id=str(return_id),
                effect=effect.value,
                error=str(e),
            ) from e

    async def list_side_effect_failures(
        self,
        return_id: Optional[uuid.UUID] = None,
        include_resolved: bool = False,
    ) -> Sequence[ReturnSideEffectFailure]:
        """List recorded side effect failures, oldest first."""
        try:
            conditions = []
            if return_id is not None:
                conditions.append(ReturnSideEffectFailure.return_id == return_id)
            if not include_resolved:
                conditions.append(ReturnSideEffectFailure.resolved_at.is_(None))

            stmt = (
                select(ReturnSideEffectFailure)
                .where(*conditions)
                .order_by(ReturnSideEffectFailure.created_at.asc())
            )
            result = await self.session.execute(stmt)
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise ReturnPersistenceError(
                "Failed to list side effect failures", error=str(e)
            ) from e

    async def resolve_side_effect_failure(
        self, failure_id: uuid.UUID
    ) -> ReturnSideEffectFailure:
        """
        Mark a recorded side effect failure as handled.

        Raises:
            ReturnNotFoundError: If no such entry exists
            ReturnPersistenceError: If the update fails
        """
        try:
            failure = await self.session.get(ReturnSideEffectFailure, failure_id)
            if failure is None:
                raise ReturnNotFoundError(
                    "Side effect failure not found",
                    failure_id=str(failure_id),
                )
            if failure.resolved_at is None:
                failure.resolved_at = _utcnow()
                await self.session.flush()
            return failure
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise ReturnPersistenceError(
                "Failed to resolve side effect failure",
                failure_id=str(failure_id),
                error=str(e),
            ) from e
