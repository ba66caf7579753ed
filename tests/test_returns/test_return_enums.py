"""
Tests for the return status enum and its allowed-edges table.
"""

import pytest

from returnflow.services.returns.enums import (
    ACTIVE_RETURN_STATUSES,
    ALLOWED_RETURN_TRANSITIONS,
    ReturnStatus,
    get_allowed_return_transitions,
    get_sources_for,
    validate_return_status_transition,
)


class TestReturnStatus:
    """Test ReturnStatus helpers."""

    def test_every_status_has_an_entry_in_the_table(self) -> None:
        assert set(ALLOWED_RETURN_TRANSITIONS) == set(ReturnStatus)

    @pytest.mark.parametrize(
        "status",
        [ReturnStatus.REFUNDED, ReturnStatus.RETURN_REJECTED],
    )
    def test_terminal_statuses(self, status: ReturnStatus) -> None:
        assert status.is_terminal()
        assert not status.is_active()
        assert get_allowed_return_transitions(status) == frozenset()

    def test_active_statuses_exclude_terminal_ones(self) -> None:
        assert ReturnStatus.REFUNDED not in ACTIVE_RETURN_STATUSES
        assert ReturnStatus.RETURN_REJECTED not in ACTIVE_RETURN_STATUSES
        assert len(ACTIVE_RETURN_STATUSES) == len(ReturnStatus) - 2

    def test_from_string_is_case_insensitive(self) -> None:
        assert ReturnStatus.from_string("RETURN_RECEIVED") is ReturnStatus.RETURN_RECEIVED

    def test_from_string_rejects_unknown_value(self) -> None:
        with pytest.raises(ValueError, match="Invalid return status"):
            ReturnStatus.from_string("lost_in_space")

    def test_display_name(self) -> None:
        assert ReturnStatus.REFUND_PROCESSING.display_name == "Refund Processing"


class TestTransitionTable:
    """Test the allowed-edges table."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (ReturnStatus.RETURN_REQUESTED, ReturnStatus.RETURN_APPROVED),
            (ReturnStatus.RETURN_REQUESTED, ReturnStatus.RETURN_REJECTED),
            (ReturnStatus.RETURN_LABEL_GENERATED, ReturnStatus.RETURN_IN_TRANSIT),
            (ReturnStatus.RETURN_LABEL_GENERATED, ReturnStatus.RETURN_RECEIVED),
            (ReturnStatus.RETURN_IN_TRANSIT, ReturnStatus.RETURN_RECEIVED),
            (ReturnStatus.RETURN_RECEIVED, ReturnStatus.REFUND_PROCESSING),
            (ReturnStatus.REFUND_PROCESSING, ReturnStatus.REFUNDED),
        ],
    )
    def test_allowed_edges(self, current: ReturnStatus, target: ReturnStatus) -> None:
        assert validate_return_status_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (ReturnStatus.REFUND_PROCESSING, ReturnStatus.RETURN_REJECTED),
            (ReturnStatus.RETURN_APPROVED, ReturnStatus.RETURN_RECEIVED),
            (ReturnStatus.REFUNDED, ReturnStatus.RETURN_REQUESTED),
            (ReturnStatus.RETURN_REJECTED, ReturnStatus.RETURN_APPROVED),
            (ReturnStatus.RETURN_REQUESTED, ReturnStatus.REFUNDED),
        ],
    )
    def test_forbidden_edges(self, current: ReturnStatus, target: ReturnStatus) -> None:
        assert not validate_return_status_transition(current, target)

    def test_sources_for_received(self) -> None:
        assert get_sources_for(ReturnStatus.RETURN_RECEIVED) == frozenset(
            {ReturnStatus.RETURN_IN_TRANSIT, ReturnStatus.RETURN_LABEL_GENERATED}
        )

    def test_requested_has_no_sources(self) -> None:
        assert get_sources_for(ReturnStatus.RETURN_REQUESTED) == frozenset()
