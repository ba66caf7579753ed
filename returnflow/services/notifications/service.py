"""
Notification dispatcher for customer-facing return emails.

Emails are best-effort: the state transition that triggers them is already
committed, so every send method reports failure as ``False`` and logs enough
context to resend by hand instead of raising.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from returnflow.core.config import Settings
from returnflow.core.logging import get_logger
from returnflow.services.notifications.aws_clients import (
    SESClient,
    SESClientError,
    get_ses_client,
)
from returnflow.services.notifications.templates import (
    TemplateEngine,
    TemplateEngineError,
)

logger = get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Klant"


class NotificationDispatcher:
    """
    Renders and sends transactional return emails.

    Attributes:
        ses_client: SES client used for delivery
        template_engine: Jinja2 template engine
    """

    def __init__(
        self,
        ses_client: SESClient,
        template_engine: Optional[TemplateEngine] = None,
    ) -> None:
        self.ses_client = ses_client
        self.template_engine = template_engine or TemplateEngine()

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationDispatcher":
        """Build a dispatcher backed by SES from application settings."""
        return cls(ses_client=get_ses_client(settings))

    async def _send(
        self,
        template_name: str,
        customer_email: str,
        context: dict[str, Any],
    ) -> bool:
        log_context = {
            "template_name": template_name,
            "recipient": customer_email,
            "return_id": str(context.get("return_id")),
            "order_id": str(context.get("order_id")),
        }

        try:
            rendered = self.template_engine.render_email(template_name, context)
            result = await asyncio.to_thread(
                self.ses_client.send_email,
                to_addresses=[customer_email],
                subject=rendered["subject"],
                body_text=rendered.get("text_body", rendered["html_body"]),
                body_html=rendered["html_body"],
            )
        except TemplateEngineError as e:
            logger.error("Return email rendering failed", error=str(e), **log_context)
            return False
        except SESClientError as e:
            logger.error(
                "Return email delivery failed",
                error=str(e),
                error_context=e.context,
                **log_context,
            )
            return False
        except Exception as e:
            logger.error(
                "Return email failed unexpectedly",
                error=str(e),
                error_type=type(e).__name__,
                **log_context,
            )
            return False

        logger.info(
            "Return email sent",
            message_id=result.get("message_id"),
            **log_context,
        )
        return True

    async def send_rejection_email(
        self,
        customer_email: str,
        customer_name: Optional[str],
        return_id: UUID,
        order_id: UUID,
        reason: str,
    ) -> bool:
        """
        Tell the customer their return was rejected.

        Args:
            customer_email: Recipient address
            customer_name: Display name, falls back to ``Klant``
            return_id: Rejected return
            order_id: Order of the return
            reason: Rejection reason shown to the customer

        Returns:
            True if the email was handed to SES, False otherwise
        """
        return await self._send(
            "return_rejected",
            customer_email,
            {
                "customer_name": customer_name or DEFAULT_CUSTOMER_NAME,
                "return_id": return_id,
                "order_id": order_id,
                "reason": reason,
            },
        )

    async def send_approval_email(
        self,
        customer_email: str,
        customer_name: Optional[str],
        return_id: UUID,
        order_id: UUID,
        refund_amount: Decimal,
    ) -> bool:
        """Tell the customer their return was approved."""
        return await self._send(
            "return_approved",
            customer_email,
            {
                "customer_name": customer_name or DEFAULT_CUSTOMER_NAME,
                "return_id": return_id,
                "order_id": order_id,
                "refund_amount": refund_amount,
            },
        )

    async def send_refund_email(
        self,
        customer_email: str,
        customer_name: Optional[str],
        return_id: UUID,
        order_id: UUID,
        refund_amount: Decimal,
    ) -> bool:
        """Tell the customer their refund was paid out."""
        return await self._send(
            "return_refunded",
            customer_email,
            {
                "customer_name": customer_name or DEFAULT_CUSTOMER_NAME,
                "return_id": return_id,
                "order_id": order_id,
                "refund_amount": refund_amount,
            },
        )
