"""
Carrier label gateway.

Return labels live at carrier URLs that require server-side credentials. The
gateway fetches the document with HTTP Basic auth so the API can proxy the
bytes to the customer without exposing the carrier URL or the keys.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from returnflow.core.config import Settings
from returnflow.core.logging import get_logger, get_request_id

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/pdf"


class CarrierError(Exception):
    """Raised when the carrier responds with a non-2xx status or is unreachable."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.context = context


class CarrierConfigurationError(CarrierError):
    """Raised when the carrier credentials are not configured."""

    pass


@dataclass(frozen=True)
class LabelDocument:
    """Raw label document returned by the carrier."""

    content: bytes
    content_type: str


class CarrierLabelGateway:
    """
    Authenticated client for carrier label documents.

    Attributes:
        timeout: Request timeout in seconds
        max_retries: Extra attempts after a transport error
    """

    def __init__(
        self,
        public_key: Optional[str],
        secret_key: Optional[str],
        timeout: float = 15.0,
        max_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the gateway.

        Args:
            public_key: Carrier public API key
            secret_key: Carrier secret API key
            timeout: Request timeout in seconds
            max_retries: Extra attempts after a transport error
            transport: Optional httpx transport, used by tests

        Raises:
            CarrierConfigurationError: If either key is missing
        """
        if not public_key or not secret_key:
            raise CarrierConfigurationError(
                "Carrier credentials are not configured: set "
                "APP_CARRIER_PUBLIC_KEY and APP_CARRIER_SECRET_KEY",
                missing=[
                    name
                    for name, value in (
                        ("APP_CARRIER_PUBLIC_KEY", public_key),
                        ("APP_CARRIER_SECRET_KEY", secret_key),
                    )
                    if not value
                ],
            )

        self._auth = httpx.BasicAuth(public_key, secret_key)
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CarrierLabelGateway":
        """Build a gateway from application settings."""
        return cls(
            public_key=settings.carrier_public_key,
            secret_key=settings.carrier_secret_key,
            timeout=settings.carrier_timeout_seconds,
            max_retries=settings.carrier_max_retries,
            transport=transport,
        )

    async def _get(self, url: str) -> httpx.Response:
        headers = {"Accept": "application/pdf"}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id

        async with httpx.AsyncClient(
            auth=self._auth,
            timeout=self.timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            return await client.get(url, headers=headers)

    async def fetch_label(self, label_url: str) -> LabelDocument:
        """
        Download a label document.

        Args:
            label_url: Carrier URL of the label

        Returns:
            Label bytes and content type

        Raises:
            CarrierError: On a non-2xx response or when every attempt failed
                with a transport error
        """
        last_error: Optional[httpx.TransportError] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._get(label_url)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "Carrier label request failed",
                    attempt=attempt + 1,
                    max_attempts=self.max_retries + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if not response.is_success:
                logger.error(
                    "Carrier rejected label request",
                    status_code=response.status_code,
                    body=response.text[:500],
                )
                raise CarrierError(
                    f"Carrier returned HTTP {response.status_code}",
                    status_code=response.status_code,
                    body=response.text,
                )

            content_type = response.headers.get("content-type", DEFAULT_CONTENT_TYPE)
            logger.info(
                "Carrier label fetched",
                size=len(response.content),
                content_type=content_type,
                attempt=attempt + 1,
            )
            return LabelDocument(content=response.content, content_type=content_type)

        raise CarrierError(
            f"Carrier unreachable: {last_error}",
            error_type=type(last_error).__name__,
        )
