"""Return status enum and state machine transition rules.

This module defines the closed set of return statuses and the allowed-edges
table that every status change is validated against.
"""

from enum import Enum
from typing import Dict, FrozenSet


class ReturnStatus(str, Enum):
    """Return lifecycle status.

    Valid transitions:
    - RETURN_REQUESTED -> RETURN_APPROVED, RETURN_REJECTED
    - RETURN_APPROVED -> RETURN_LABEL_PAYMENT_PENDING
    - RETURN_LABEL_PAYMENT_PENDING -> RETURN_LABEL_PAYMENT_COMPLETED
    - RETURN_LABEL_PAYMENT_COMPLETED -> RETURN_LABEL_GENERATED
    - RETURN_LABEL_GENERATED -> RETURN_IN_TRANSIT, RETURN_RECEIVED
    - RETURN_IN_TRANSIT -> RETURN_RECEIVED
    - RETURN_RECEIVED -> REFUND_PROCESSING
    - REFUND_PROCESSING -> REFUNDED
    - RETURN_REJECTED -> (terminal state)
    - REFUNDED -> (terminal state)
    """

    RETURN_REQUESTED = "return_requested"
    RETURN_APPROVED = "return_approved"
    RETURN_LABEL_PAYMENT_PENDING = "return_label_payment_pending"
    RETURN_LABEL_PAYMENT_COMPLETED = "return_label_payment_completed"
    RETURN_LABEL_GENERATED = "return_label_generated"
    RETURN_IN_TRANSIT = "return_in_transit"
    RETURN_RECEIVED = "return_received"
    REFUND_PROCESSING = "refund_processing"
    REFUNDED = "refunded"
    RETURN_REJECTED = "return_rejected"

    @classmethod
    def from_string(cls, value: str) -> "ReturnStatus":
        """Convert string to ReturnStatus enum.

        Args:
            value: String representation of status

        Returns:
            ReturnStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid return status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state (REJECTED, REFUNDED)."""
        return not ALLOWED_RETURN_TRANSITIONS[self]

    def is_active(self) -> bool:
        """Check if the return is still open."""
        return not self.is_terminal()

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return self.value.replace("_", " ").title()


ALLOWED_RETURN_TRANSITIONS: Dict[ReturnStatus, FrozenSet[ReturnStatus]] = {
    ReturnStatus.RETURN_REQUESTED: frozenset(
        {ReturnStatus.RETURN_APPROVED, ReturnStatus.RETURN_REJECTED}
    ),
    ReturnStatus.RETURN_APPROVED: frozenset(
        {ReturnStatus.RETURN_LABEL_PAYMENT_PENDING}
    ),
    ReturnStatus.RETURN_LABEL_PAYMENT_PENDING: frozenset(
        {ReturnStatus.RETURN_LABEL_PAYMENT_COMPLETED}
    ),
    ReturnStatus.RETURN_LABEL_PAYMENT_COMPLETED: frozenset(
        {ReturnStatus.RETURN_LABEL_GENERATED}
    ),
    ReturnStatus.RETURN_LABEL_GENERATED: frozenset(
        {ReturnStatus.RETURN_IN_TRANSIT, ReturnStatus.RETURN_RECEIVED}
    ),
    ReturnStatus.RETURN_IN_TRANSIT: frozenset({ReturnStatus.RETURN_RECEIVED}),
    ReturnStatus.RETURN_RECEIVED: frozenset({ReturnStatus.REFUND_PROCESSING}),
    ReturnStatus.REFUND_PROCESSING: frozenset({ReturnStatus.REFUNDED}),
    ReturnStatus.REFUNDED: frozenset(),
    ReturnStatus.RETURN_REJECTED: frozenset(),
}


def validate_return_status_transition(
    current: ReturnStatus, target: ReturnStatus
) -> bool:
    """Check whether ``current -> target`` is an allowed edge."""
    return target in ALLOWED_RETURN_TRANSITIONS[current]


def get_allowed_return_transitions(current: ReturnStatus) -> FrozenSet[ReturnStatus]:
    """Get the statuses reachable in one step from ``current``."""
    return ALLOWED_RETURN_TRANSITIONS[current]


def get_sources_for(target: ReturnStatus) -> FrozenSet[ReturnStatus]:
    """Get every status from which ``target`` can be entered."""
    return frozenset(
        source
        for source, targets in ALLOWED_RETURN_TRANSITIONS.items()
        if target in targets
    )


ACTIVE_RETURN_STATUSES: FrozenSet[ReturnStatus] = frozenset(
    status for status in ReturnStatus if status.is_active()
)
