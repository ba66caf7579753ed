"""
Tests for the Stripe refund client.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch
from uuid import uuid4

import pytest
import stripe

from returnflow.services.payments.stripe_client import (
    StripeClient,
    StripeClientError,
    StripeConfigurationError,
    StripeConnectionError,
    to_minor_units,
)

REFUND_CREATE = "returnflow.services.payments.stripe_client.stripe.Refund.create"


@pytest.fixture
def client() -> StripeClient:
    return StripeClient(api_key="sk_test_123", max_retries=2, initial_backoff=0)


class TestMinorUnits:
    """Test euro to cent conversion."""

    @pytest.mark.parametrize(
        "amount,cents",
        [
            (Decimal("99.90"), 9990),
            (Decimal("0.01"), 1),
            (Decimal("10.005"), 1001),
            (Decimal("49"), 4900),
        ],
    )
    def test_to_minor_units(self, amount: Decimal, cents: int) -> None:
        assert to_minor_units(amount) == cents


class TestStripeClient:
    """Test refund creation and error mapping."""

    def test_missing_api_key(self) -> None:
        with pytest.raises(StripeConfigurationError, match="APP_STRIPE_SECRET_KEY"):
            StripeClient(api_key=None)

    def test_create_refund(self, client: StripeClient) -> None:
        return_id, order_id = uuid4(), uuid4()

        with patch(REFUND_CREATE) as create:
            create.return_value = SimpleNamespace(id="re_1", status="succeeded")
            refund = client.create_refund(
                payment_intent_id="pi_123",
                amount=Decimal("99.90"),
                return_id=return_id,
                order_id=order_id,
            )

        assert refund.id == "re_1"
        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["payment_intent"] == "pi_123"
        assert kwargs["amount"] == 9990
        assert kwargs["reason"] == "requested_by_customer"
        assert kwargs["idempotency_key"] == f"return-refund-{return_id}"
        assert kwargs["metadata"]["return_id"] == str(return_id)
        assert kwargs["metadata"]["order_id"] == str(order_id)
        assert kwargs["metadata"]["type"] == "return_refund"

    def test_transient_error_is_retried(self, client: StripeClient) -> None:
        with patch(REFUND_CREATE) as create:
            create.side_effect = [
                stripe.APIConnectionError("network down"),
                SimpleNamespace(id="re_2", status="pending"),
            ]
            refund = client.create_refund(
                payment_intent_id="pi_123",
                amount=Decimal("10.00"),
                return_id=uuid4(),
                order_id=uuid4(),
            )

        assert refund.status == "pending"
        assert create.call_count == 2

    def test_connection_error_after_retries(self, client: StripeClient) -> None:
        with patch(REFUND_CREATE) as create:
            create.side_effect = stripe.APIConnectionError("network down")

            with pytest.raises(StripeConnectionError):
                client.create_refund(
                    payment_intent_id="pi_123",
                    amount=Decimal("10.00"),
                    return_id=uuid4(),
                    order_id=uuid4(),
                )

        assert create.call_count == 3

    def test_invalid_request_is_not_retried(self, client: StripeClient) -> None:
        with patch(REFUND_CREATE) as create:
            create.side_effect = stripe.InvalidRequestError(
                "Refund amount exceeds charge", param="amount"
            )

            with pytest.raises(StripeClientError, match="rejected") as exc_info:
                client.create_refund(
                    payment_intent_id="pi_123",
                    amount=Decimal("500.00"),
                    return_id=uuid4(),
                    order_id=uuid4(),
                )

        assert create.call_count == 1
        assert isinstance(exc_info.value.stripe_error, stripe.InvalidRequestError)
