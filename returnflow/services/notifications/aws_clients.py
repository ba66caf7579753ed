"""
AWS SES client wrapper with error handling.

Credentials, region and timeouts are passed in explicitly; the wrapper never
reads settings or the environment itself.
"""

import time
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
)

from returnflow.core.config import Settings
from returnflow.core.logging import get_logger

logger = get_logger(__name__)

# SES error codes that will not succeed on retry.
NON_RETRYABLE_ERROR_CODES = frozenset(
    {
        "MessageRejected",
        "MailFromDomainNotVerified",
        "ConfigurationSetDoesNotExist",
    }
)


class SESClientError(Exception):
    """Raised when an email could not be handed to SES."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.service = "SES"
        self.context = context


class SESClient:
    """
    AWS SES client wrapper with retry logic.

    Attributes:
        from_address: Default sender address
        max_retries: Total send attempts
        retry_backoff: Initial backoff in seconds, doubled per attempt
    """

    def __init__(
        self,
        from_address: str,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: str = "eu-west-1",
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        client: Any = None,
    ) -> None:
        """
        Initialize SES client.

        Args:
            from_address: Default sender address
            aws_access_key_id: AWS access key ID, None for the default chain
            aws_secret_access_key: AWS secret access key
            region_name: AWS region name
            timeout: Connect and read timeout in seconds
            max_retries: Total send attempts
            retry_backoff: Initial backoff time in seconds for retries
            client: Prebuilt boto3 SES client, used by tests
        """
        self.from_address = from_address
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

        self._client = client or boto3.client(
            "ses",
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 1},
            ),
        )

        logger.info(
            "SES client initialized",
            region=region_name,
            max_retries=max_retries,
        )

    def send_email(
        self,
        to_addresses: list[str],
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        from_address: Optional[str] = None,
        reply_to_addresses: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """
        Send an email through SES.

        Args:
            to_addresses: Recipient email addresses
            subject: Email subject
            body_text: Plain text body
            body_html: Optional HTML body
            from_address: Sender address, defaults to ``from_address``
            reply_to_addresses: Reply-to addresses (optional)

        Returns:
            Send result with the SES message ID

        Raises:
            SESClientError: If sending fails after all retries or is rejected
        """
        from_address = from_address or self.from_address

        if not to_addresses:
            raise SESClientError("No recipient addresses provided")

        body: dict[str, Any] = {"Text": {"Data": body_text, "Charset": "UTF-8"}}
        if body_html:
            body["Html"] = {"Data": body_html, "Charset": "UTF-8"}

        send_params: dict[str, Any] = {
            "Source": from_address,
            "Destination": {"ToAddresses": to_addresses},
            "Message": {
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": body,
            },
        }
        if reply_to_addresses:
            send_params["ReplyToAddresses"] = reply_to_addresses

        last_exception: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = self._client.send_email(**send_params)
                message_id = response["MessageId"]
                logger.info(
                    "Email sent via SES",
                    message_id=message_id,
                    to_addresses=to_addresses,
                    attempt=attempt + 1,
                )
                return {
                    "message_id": message_id,
                    "status": "sent",
                    "to_addresses": to_addresses,
                    "subject": subject,
                }

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                error_message = e.response.get("Error", {}).get("Message", str(e))
                logger.warning(
                    "SES client error",
                    attempt=attempt + 1,
                    error_code=error_code,
                    error_message=error_message,
                    to_addresses=to_addresses,
                )
                last_exception = e

                if error_code in NON_RETRYABLE_ERROR_CODES:
                    raise SESClientError(
                        f"SES error: {error_message}",
                        error_code=error_code,
                        to_addresses=to_addresses,
                    ) from e

            except (BotoConnectionError, EndpointConnectionError, BotoCoreError) as e:
                logger.warning(
                    "SES connection error",
                    attempt=attempt + 1,
                    error=str(e),
                    to_addresses=to_addresses,
                )
                last_exception = e

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_backoff * (2**attempt))

        raise SESClientError(
            f"Failed to send email after {self.max_retries} attempts",
            to_addresses=to_addresses,
            last_error=str(last_exception),
        ) from last_exception


def get_ses_client(settings: Settings) -> SESClient:
    """
    Build an SES client from application settings.

    Args:
        settings: Application settings

    Returns:
        Configured SES client instance
    """
    return SESClient(
        from_address=settings.ses_from_email,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        region_name=settings.aws_region,
        timeout=settings.email_timeout_seconds,
        max_retries=settings.email_max_retries,
    )
