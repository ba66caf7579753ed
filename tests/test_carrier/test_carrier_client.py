"""
Tests for the carrier label gateway.

The carrier is simulated with ``httpx.MockTransport``.
"""

import base64

import httpx
import pytest

from returnflow.core.config import Settings
from returnflow.services.carrier.client import (
    CarrierConfigurationError,
    CarrierError,
    CarrierLabelGateway,
)

LABEL_URL = "https://carrier.example/labels/abc.pdf"


def _gateway(handler, max_retries: int = 1) -> CarrierLabelGateway:
    return CarrierLabelGateway(
        public_key="pk_live",
        secret_key="sk_live",
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


class TestCarrierConfiguration:
    """Test credential handling."""

    @pytest.mark.parametrize(
        "public_key,secret_key,missing",
        [
            (None, "sk", ["APP_CARRIER_PUBLIC_KEY"]),
            ("pk", "", ["APP_CARRIER_SECRET_KEY"]),
            (None, None, ["APP_CARRIER_PUBLIC_KEY", "APP_CARRIER_SECRET_KEY"]),
        ],
    )
    def test_missing_credentials(self, public_key, secret_key, missing) -> None:
        with pytest.raises(CarrierConfigurationError) as exc_info:
            CarrierLabelGateway(public_key=public_key, secret_key=secret_key)

        assert exc_info.value.context["missing"] == missing
        assert "APP_CARRIER_PUBLIC_KEY" in str(exc_info.value)

    def test_from_settings(self) -> None:
        settings = Settings(
            carrier_public_key="pk",
            carrier_secret_key="sk",
            carrier_timeout_seconds=3.0,
            carrier_max_retries=2,
        )

        gateway = CarrierLabelGateway.from_settings(settings)

        assert gateway.timeout == 3.0
        assert gateway.max_retries == 2

    def test_from_settings_without_keys(self) -> None:
        with pytest.raises(CarrierConfigurationError):
            CarrierLabelGateway.from_settings(
                Settings(carrier_public_key=None, carrier_secret_key=None)
            )


class TestFetchLabel:
    """Test downloading label documents."""

    async def test_success_returns_bytes_with_basic_auth(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, content=b"%PDF-label", headers={"content-type": "application/pdf"}
            )

        label = await _gateway(handler).fetch_label(LABEL_URL)

        assert label.content == b"%PDF-label"
        assert label.content_type == "application/pdf"
        expected = "Basic " + base64.b64encode(b"pk_live:sk_live").decode()
        assert seen[0].headers["authorization"] == expected

    async def test_missing_content_type_defaults_to_pdf(self) -> None:
        label = await _gateway(lambda request: httpx.Response(200, content=b"data")).fetch_label(
            LABEL_URL
        )

        assert label.content_type == "application/pdf"

    async def test_non_2xx_raises_with_status_and_body(self) -> None:
        gateway = _gateway(lambda request: httpx.Response(401, text="invalid api key"))

        with pytest.raises(CarrierError) as exc_info:
            await gateway.fetch_label(LABEL_URL)

        assert exc_info.value.status_code == 401
        assert exc_info.value.body == "invalid api key"
        assert "401" in str(exc_info.value)

    async def test_transport_error_is_retried(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, content=b"%PDF")

        label = await _gateway(handler, max_retries=1).fetch_label(LABEL_URL)

        assert label.content == b"%PDF"
        assert len(attempts) == 2

    async def test_unreachable_carrier_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(CarrierError) as exc_info:
            await _gateway(handler, max_retries=1).fetch_label(LABEL_URL)

        assert exc_info.value.status_code is None
        assert "unreachable" in str(exc_info.value)
