"""
Tests for return email rendering and delivery.

SES is replaced by a MagicMock boto3 client; templates are the ones shipped
with the package.
"""

from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from returnflow.services.notifications.aws_clients import SESClient, SESClientError
from returnflow.services.notifications.service import NotificationDispatcher
from returnflow.services.notifications.templates import (
    TemplateEngine,
    TemplateNotFoundError,
)

RETURN_ID = uuid4()
ORDER_ID = uuid4()


# ============================================================================
# SES client
# ============================================================================


def _ses_client(boto_client: MagicMock) -> SESClient:
    return SESClient(
        from_address="retouren@example.nl",
        client=boto_client,
        max_retries=2,
        retry_backoff=0,
    )


class TestSESClient:
    """Test the SES wrapper."""

    def test_send_email_returns_message_id(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.return_value = {"MessageId": "msg-123"}

        result = _ses_client(boto_client).send_email(
            to_addresses=["klant@example.nl"],
            subject="Onderwerp",
            body_text="Tekst",
            body_html="<p>Tekst</p>",
        )

        assert result["message_id"] == "msg-123"
        assert result["status"] == "sent"
        params = boto_client.send_email.call_args.kwargs
        assert params["Source"] == "retouren@example.nl"
        assert params["Destination"] == {"ToAddresses": ["klant@example.nl"]}
        assert "Html" in params["Message"]["Body"]

    def test_rejected_message_is_not_retried(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Address blacklisted"}},
            "SendEmail",
        )

        with pytest.raises(SESClientError) as exc_info:
            _ses_client(boto_client).send_email(
                to_addresses=["klant@example.nl"], subject="s", body_text="t"
            )

        assert boto_client.send_email.call_count == 1
        assert exc_info.value.context["error_code"] == "MessageRejected"

    def test_connection_errors_exhaust_attempts(self) -> None:
        boto_client = MagicMock()
        boto_client.send_email.side_effect = EndpointConnectionError(
            endpoint_url="https://email.eu-west-1.amazonaws.com"
        )

        with pytest.raises(SESClientError, match="after 2 attempts"):
            _ses_client(boto_client).send_email(
                to_addresses=["klant@example.nl"], subject="s", body_text="t"
            )

        assert boto_client.send_email.call_count == 2

    def test_no_recipients_is_rejected(self) -> None:
        boto_client = MagicMock()

        with pytest.raises(SESClientError, match="No recipient"):
            _ses_client(boto_client).send_email(to_addresses=[], subject="s", body_text="t")

        boto_client.send_email.assert_not_called()


# ============================================================================
# Templates
# ============================================================================


class TestTemplateEngine:
    """Test rendering of the shipped email templates."""

    def test_render_rejection(self) -> None:
        rendered = TemplateEngine().render_email(
            "return_rejected",
            {
                "customer_name": "Jan Jansen",
                "return_id": RETURN_ID,
                "order_id": ORDER_ID,
                "reason": "Product beschadigd",
            },
        )

        assert str(RETURN_ID)[:8].upper() in rendered["subject"]
        assert "afgewezen" in rendered["subject"]
        assert "Product beschadigd" in rendered["text_body"]
        assert "Jan Jansen" in rendered["html_body"]

    def test_render_approval_formats_amount(self) -> None:
        rendered = TemplateEngine().render_email(
            "return_approved",
            {
                "customer_name": "Jan Jansen",
                "return_id": RETURN_ID,
                "order_id": ORDER_ID,
                "refund_amount": Decimal("49.95"),
            },
        )

        assert "€ 49,95" in rendered["text_body"]

    def test_html_escapes_customer_input(self) -> None:
        rendered = TemplateEngine().render_email(
            "return_rejected",
            {
                "customer_name": "Jan",
                "return_id": RETURN_ID,
                "order_id": ORDER_ID,
                "reason": "<script>alert(1)</script>",
            },
        )

        assert "<script>" not in rendered["html_body"]

    def test_missing_template_raises(self) -> None:
        with pytest.raises(TemplateNotFoundError) as exc_info:
            TemplateEngine().render_email("return_lost", {})

        assert exc_info.value.template_name == "return_lost"

    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("49.95"), "€ 49,95"),
            (Decimal("1234.5"), "€ 1.234,50"),
            (0, "€ 0,00"),
        ],
    )
    def test_currency_filter(self, amount, expected: str) -> None:
        assert TemplateEngine._format_currency(amount) == expected


# ============================================================================
# Dispatcher
# ============================================================================


@pytest.fixture
def ses_client() -> MagicMock:
    client = MagicMock(spec=SESClient)
    client.send_email.return_value = {"message_id": "msg-1", "status": "sent"}
    return client


class TestNotificationDispatcher:
    """Test the best-effort email dispatcher."""

    async def test_send_rejection_email(self, ses_client: MagicMock) -> None:
        dispatcher = NotificationDispatcher(ses_client)

        sent = await dispatcher.send_rejection_email(
            customer_email="klant@example.nl",
            customer_name="Jan Jansen",
            return_id=RETURN_ID,
            order_id=ORDER_ID,
            reason="Product beschadigd",
        )

        assert sent is True
        kwargs = ses_client.send_email.call_args.kwargs
        assert kwargs["to_addresses"] == ["klant@example.nl"]
        assert "afgewezen" in kwargs["subject"]
        assert "Product beschadigd" in kwargs["body_text"]

    async def test_missing_name_falls_back_to_default(self, ses_client: MagicMock) -> None:
        dispatcher = NotificationDispatcher(ses_client)

        await dispatcher.send_approval_email(
            customer_email="klant@example.nl",
            customer_name=None,
            return_id=RETURN_ID,
            order_id=ORDER_ID,
            refund_amount=Decimal("99.90"),
        )

        assert "Beste Klant" in ses_client.send_email.call_args.kwargs["body_text"]

    async def test_delivery_failure_returns_false(self, ses_client: MagicMock) -> None:
        ses_client.send_email.side_effect = SESClientError("SES down")
        dispatcher = NotificationDispatcher(ses_client)

        sent = await dispatcher.send_refund_email(
            customer_email="klant@example.nl",
            customer_name="Jan",
            return_id=RETURN_ID,
            order_id=ORDER_ID,
            refund_amount=Decimal("99.90"),
        )

        assert sent is False

    async def test_template_failure_returns_false(self, ses_client: MagicMock) -> None:
        engine = MagicMock(spec=TemplateEngine)
        engine.render_email.side_effect = TemplateNotFoundError(
            "missing", template_name="return_rejected"
        )
        dispatcher = NotificationDispatcher(ses_client, template_engine=engine)

        sent = await dispatcher.send_rejection_email(
            customer_email="klant@example.nl",
            customer_name="Jan",
            return_id=RETURN_ID,
            order_id=ORDER_ID,
            reason="x",
        )

        assert sent is False
        ses_client.send_email.assert_not_called()
