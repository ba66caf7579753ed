"""
Stripe API client wrapper for return refunds.

Refunds are created with an idempotency key derived from the return, so a
retried or concurrent refund request for the same return reaches Stripe as a
single refund.
"""

import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import stripe
from stripe import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    IdempotencyError,
    InvalidRequestError,
    RateLimitError,
    StripeError,
)

from returnflow.core.config import Settings
from returnflow.core.logging import get_logger

logger = get_logger(__name__)


class StripeClientError(Exception):
    """Base exception for Stripe client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stripe_error: Optional[StripeError] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.stripe_error = stripe_error
        self.context = context


class StripeConfigurationError(StripeClientError):
    """Raised when no Stripe API key is configured."""

    pass


class StripeConnectionError(StripeClientError):
    """Raised when Stripe stays unreachable after all retries."""

    pass


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount in euros to cents."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeClient:
    """
    Stripe client with retry on transient errors.

    Connection, rate limit and API errors are retried with exponential
    backoff; every other Stripe error is raised immediately.
    """

    RETRYABLE_ERRORS = (APIConnectionError, RateLimitError, APIError)

    def __init__(
        self,
        api_key: Optional[str],
        max_retries: int = 2,
        initial_backoff: float = 0.5,
        max_backoff: float = 8.0,
    ):
        """
        Initialize Stripe client.

        Args:
            api_key: Stripe secret API key
            max_retries: Retries after the first attempt
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds

        Raises:
            StripeConfigurationError: If no API key is given
        """
        if not api_key:
            raise StripeConfigurationError(
                "Stripe is not configured: set APP_STRIPE_SECRET_KEY"
            )
        self.api_key = api_key
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeClient":
        """Build a client from application settings."""
        return cls(api_key=settings.stripe_secret_key)

    def _calculate_backoff(self, attempt: int) -> float:
        return min(self.initial_backoff * (2**attempt), self.max_backoff)

    def _execute_with_retry(
        self,
        operation: str,
        func: Callable[..., Any],
        **kwargs: Any,
    ) -> Any:
        """
        Execute a Stripe API call, retrying transient failures.

        Raises:
            StripeClientError: If the call fails permanently
        """
        for attempt in range(self.max_retries + 1):
            try:
                return func(api_key=self.api_key, **kwargs)

            except self.RETRYABLE_ERRORS as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "Stripe operation failed after retries",
                        operation=operation,
                        attempts=attempt + 1,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    error_cls = (
                        StripeConnectionError
                        if isinstance(e, APIConnectionError)
                        else StripeClientError
                    )
                    raise error_cls(
                        f"Stripe {operation} failed: {e.user_message or e}",
                        code=getattr(e, "code", None),
                        stripe_error=e,
                    ) from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Stripe transient error, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    backoff_seconds=backoff,
                    error_type=type(e).__name__,
                )
                time.sleep(backoff)

            except (AuthenticationError, InvalidRequestError, IdempotencyError) as e:
                logger.error(
                    "Stripe request rejected",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripeClientError(
                    f"Stripe {operation} rejected: {e.user_message or e}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    f"Stripe error: {e.user_message or e}",
                    code=getattr(e, "code", None),
                    stripe_error=e,
                ) from e

        raise StripeClientError(f"Stripe {operation} was not attempted")

    def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal,
        return_id: UUID,
        order_id: UUID,
    ) -> stripe.Refund:
        """
        Refund part of a payment for a return.

        Args:
            payment_intent_id: Payment intent charged at checkout
            amount: Amount to refund in euros
            return_id: Return being refunded
            order_id: Order of the return

        Returns:
            Stripe Refund object

        Raises:
            StripeClientError: If the refund cannot be created
        """
        logger.info(
            "Creating refund",
            return_id=str(return_id),
            order_id=str(order_id),
            amount=str(amount),
        )

        refund = self._execute_with_retry(
            "create_refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=to_minor_units(amount),
            reason="requested_by_customer",
            metadata={
                "return_id": str(return_id),
                "order_id": str(order_id),
                "type": "return_refund",
                "refund_amount": str(amount),
            },
            idempotency_key=f"return-refund-{return_id}",
        )

        logger.info(
            "Refund created",
            return_id=str(return_id),
            refund_id=refund.id,
            refund_status=refund.status,
        )
        return refund
