"""Return state machine with conditional transitions.

This module implements the ReturnStateMachine class which validates a
requested transition against the allowed-edges table, writes it as a
conditional update together with its history entry and commits it before any
side effect is attempted.
"""

from typing import Any, FrozenSet, Iterable, Optional
from uuid import UUID

from returnflow.core.logging import get_logger
from returnflow.database.models.return_request import Return
from returnflow.services.returns.enums import (
    ReturnStatus,
    get_allowed_return_transitions,
    get_sources_for,
    validate_return_status_transition,
)
from returnflow.services.returns.repository import (
    ReturnNotFoundError,
    ReturnRepository,
)

logger = get_logger(__name__)


class InvalidStateTransitionError(Exception):
    """Raised when a return is not in a status the transition may start from."""

    def __init__(
        self,
        message: str,
        current_status: ReturnStatus,
        target_status: ReturnStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status
        self.context = context


class ReturnStateMachine:
    """State machine for return lifecycle transitions.

    Every transition is applied as ``UPDATE ... WHERE status IN (:expected)``
    so two concurrent admin actions cannot both apply it.
    """

    def __init__(self, repository: ReturnRepository):
        """Initialize state machine.

        Args:
            repository: Return repository used for persistence
        """
        self.repository = repository

    @staticmethod
    def _resolve_sources(
        target_status: ReturnStatus,
        allowed_from: Optional[Iterable[ReturnStatus]],
    ) -> FrozenSet[ReturnStatus]:
        if allowed_from is None:
            return get_sources_for(target_status)

        sources = frozenset(allowed_from)
        for source in sources:
            if not validate_return_status_transition(source, target_status):
                raise ValueError(
                    f"{source.value} -> {target_status.value} is not an allowed "
                    "return transition"
                )
        return sources

    @staticmethod
    def _transition_error(
        return_id: UUID,
        current_status: ReturnStatus,
        target_status: ReturnStatus,
        sources: FrozenSet[ReturnStatus],
    ) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            f"Cannot change return status to '{target_status.value}': "
            f"current status is '{current_status.value}'",
            current_status=current_status,
            target_status=target_status,
            return_id=str(return_id),
            required_status=sorted(status.value for status in sources),
            allowed_transitions=sorted(
                status.value for status in get_allowed_return_transitions(current_status)
            ),
        )

    def validate_transition(
        self,
        return_request: Return,
        target_status: ReturnStatus,
        allowed_from: Optional[Iterable[ReturnStatus]] = None,
    ) -> None:
        """Check that the return's loaded status permits the transition.

        Args:
            return_request: Return to validate
            target_status: Desired target status
            allowed_from: Statuses the operation accepts; defaults to every
                status with an edge into ``target_status``

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        sources = self._resolve_sources(target_status, allowed_from)
        current_status = return_request.status

        if current_status not in sources:
            logger.info(
                "Return transition rejected",
                return_id=str(return_request.id),
                current_status=current_status.value,
                target_status=target_status.value,
            )
            raise self._transition_error(
                return_request.id, current_status, target_status, sources
            )

    async def apply_transition(
        self,
        return_request: Return,
        target_status: ReturnStatus,
        allowed_from: Optional[Iterable[ReturnStatus]] = None,
        changed_by: Optional[UUID] = None,
        notes: Optional[str] = None,
        **values: Any,
    ) -> None:
        """Validate, conditionally write and commit a transition.

        Args:
            return_request: Return to transition
            target_status: Status to move to
            allowed_from: Statuses the operation accepts
            changed_by: User triggering the change
            notes: Note stored on the history entry
            **values: Additional columns written with the status

        Raises:
            InvalidStateTransitionError: If the stored status no longer permits
                the transition
            ReturnNotFoundError: If the return disappeared
            ReturnPersistenceError: If the write or commit fails
        """
        self.validate_transition(return_request, target_status, allowed_from)
        sources = self._resolve_sources(target_status, allowed_from)
        return_id = return_request.id
        previous_status = return_request.status

        applied = await self.repository.transition_status(
            return_id,
            sources,
            target_status,
            changed_by=changed_by,
            notes=notes,
            **values,
        )

        if not applied:
            await self.repository.rollback()
            current_status = await self.repository.get_current_status(return_id)
            if current_status is None:
                raise ReturnNotFoundError(
                    "Return not found", return_id=str(return_id)
                )
            logger.warning(
                "Return status changed concurrently",
                return_id=str(return_id),
                current_status=current_status.value,
                target_status=target_status.value,
            )
            raise self._transition_error(
                return_id, current_status, target_status, sources
            )

        await self.repository.commit()

        logger.info(
            "Return transition committed",
            return_id=str(return_id),
            transition=f"{previous_status.value}->{target_status.value}",
            changed_by=str(changed_by) if changed_by else None,
        )
