"""Tests for the OAuth device authorization flow (RFC 8628).

Polling goes to the FakeIdP token endpoint, whose answers are scripted
per test through idp.device_responses.
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from oidc_broker.config import BrokerConfig
from oidc_broker.exceptions import (
    AuthCancelledError,
    DeviceFlowDeniedError,
    DeviceFlowExpiredError,
    ProviderUnreachableError,
)
from oidc_broker.security.auth.device_flow import DeviceCodeResponse, DeviceFlow
from oidc_broker.security.auth.discovery import ProviderMetadata, fetch_provider_metadata

PENDING = (400, {"error": "authorization_pending"})
SLOW_DOWN = (400, {"error": "slow_down"})
TOKEN = (200, {"token": True})


@pytest.fixture
async def metadata(http_client: httpx.AsyncClient, broker_config: BrokerConfig) -> ProviderMetadata:
    """Discovered metadata of the fake provider."""
    return await fetch_provider_metadata(http_client, broker_config.issuer)


@pytest.fixture
def device_flow(broker_config: BrokerConfig, metadata: ProviderMetadata, http_client: httpx.AsyncClient) -> DeviceFlow:
    """Device flow against the fake provider."""
    return DeviceFlow(broker_config, metadata, http_client)


@pytest.fixture
def device_code() -> DeviceCodeResponse:
    """Device code with no poll delay."""
    return DeviceCodeResponse(
        device_code="device-code-123",
        user_code="ABCD-EFGH",
        verification_uri="https://idp.example.com/activate",
        verification_uri_complete=None,
        expires_in=900,
        interval=0,
    )


# ============================================================================
# Tests: DeviceCodeResponse
# ============================================================================


class TestDeviceCodeResponse:
    """Tests for DeviceCodeResponse parsing."""

    def test_from_response_parses_all_fields(self) -> None:
        """Given a complete response, parses all fields correctly."""
        # Act
        response = DeviceCodeResponse.from_response(
            {
                "device_code": "dc",
                "user_code": "UC",
                "verification_uri": "https://idp/activate",
                "verification_uri_complete": "https://idp/activate?code=UC",
                "expires_in": 600,
                "interval": 3,
            }
        )

        # Assert
        assert response.user_code == "UC"
        assert response.verification_uri_complete == "https://idp/activate?code=UC"
        assert response.expires_in == 600
        assert response.interval == 3

    def test_verification_url_alias(self) -> None:
        """Given "verification_url" instead of the RFC name, it is accepted."""
        # Act
        response = DeviceCodeResponse.from_response(
            {"device_code": "dc", "user_code": "UC", "verification_url": "https://idp/go", "expires_in": 600}
        )

        # Assert
        assert response.verification_uri == "https://idp/go"
        assert response.interval == 5  # Default


# ============================================================================
# Tests: Device code request
# ============================================================================


class TestRequestDeviceCode:
    """Tests for DeviceFlow.request_device_code."""

    async def test_returns_codes_and_sends_extra_params(self, device_flow: DeviceFlow, idp) -> None:
        """Given provider options, they are sent with the request."""
        # Act
        response = await device_flow.request_device_code(["openid"], extra_params={"prompt": "select_account"})

        # Assert
        assert response.user_code == "ABCD-EFGH"
        sent = dict(httpx.QueryParams(idp.requests[-1].content.decode()))
        assert sent["prompt"] == "select_account"
        assert sent["client_id"] == idp.client_id

    async def test_missing_endpoint_raises(
        self, broker_config: BrokerConfig, http_client: httpx.AsyncClient, idp
    ) -> None:
        """Given a provider without device endpoint, raises ProviderUnreachableError."""
        # Arrange
        idp.device_supported = False
        metadata = await fetch_provider_metadata(http_client, idp.issuer)
        flow = DeviceFlow(broker_config, metadata, http_client)

        # Act & Assert
        with pytest.raises(ProviderUnreachableError, match="device authorization"):
            await flow.request_device_code(["openid"])

    async def test_unreachable_raises(self, device_flow: DeviceFlow, idp) -> None:
        """Given a connection failure, raises ProviderUnreachableError."""
        # Arrange
        idp.reachable = False

        # Act & Assert
        with pytest.raises(ProviderUnreachableError):
            await device_flow.request_device_code(["openid"])


# ============================================================================
# Tests: Polling
# ============================================================================


class TestPollForToken:
    """Tests for DeviceFlow.poll_for_token."""

    async def test_pending_then_token(self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp) -> None:
        """Given two pending answers then a token, returns the token."""
        # Arrange
        idp.device_responses = [PENDING, PENDING, TOKEN]

        # Act
        token = await device_flow.poll_for_token(device_code)

        # Assert
        assert token.access_token == "access-alice"
        assert len(idp.token_requests()) == 3

    async def test_slow_down_increases_interval(
        self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp
    ) -> None:
        """Given slow_down twice, the wait grows by 5 seconds each time."""
        # Arrange
        device_code.interval = 1
        idp.device_responses = [SLOW_DOWN, SLOW_DOWN, TOKEN]
        sleep = AsyncMock()

        # Act
        with patch("oidc_broker.security.auth.device_flow.sleep_cancellable", sleep):
            await device_flow.poll_for_token(device_code)

        # Assert
        waits = [call.args[0] for call in sleep.await_args_list]
        assert waits == [1, 6, 11]

    async def test_expired_token_raises(self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp) -> None:
        """Given expired_token, raises DeviceFlowExpiredError (reason expired)."""
        # Arrange
        idp.device_responses = [PENDING, (400, {"error": "expired_token"})]

        # Act
        with pytest.raises(DeviceFlowExpiredError) as exc_info:
            await device_flow.poll_for_token(device_code)

        # Assert
        assert exc_info.value.reason == "expired"

    async def test_access_denied_raises(self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp) -> None:
        """Given access_denied, raises DeviceFlowDeniedError (reason denied)."""
        # Arrange
        idp.device_responses = [(400, {"error": "access_denied"})]

        # Act
        with pytest.raises(DeviceFlowDeniedError) as exc_info:
            await device_flow.poll_for_token(device_code)

        # Assert
        assert exc_info.value.reason == "denied"

    async def test_transport_errors_below_limit_are_retried(
        self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp
    ) -> None:
        """Given three consecutive transport errors then a token, succeeds."""
        # Arrange
        idp.device_responses = [
            httpx.ConnectError("down"),
            httpx.ReadTimeout("slow"),
            (503, {"error": "temporarily_unavailable"}),
            TOKEN,
        ]

        # Act
        token = await device_flow.poll_for_token(device_code, max_transport_errors=3)

        # Assert
        assert token.access_token == "access-alice"

    async def test_transport_errors_over_limit_fail(
        self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp
    ) -> None:
        """Given four consecutive transport errors, raises ProviderUnreachableError."""
        # Arrange
        idp.device_responses = [httpx.ConnectError("down") for _ in range(4)] + [TOKEN]

        # Act & Assert
        with pytest.raises(ProviderUnreachableError, match="4 consecutive errors"):
            await device_flow.poll_for_token(device_code, max_transport_errors=3)

    async def test_pending_resets_error_count(
        self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp
    ) -> None:
        """Given errors separated by a pending answer, the limit is not reached."""
        # Arrange
        down = httpx.ConnectError("down")
        idp.device_responses = [down, down, down, PENDING, down, down, down, TOKEN]

        # Act
        token = await device_flow.poll_for_token(device_code, max_transport_errors=3)

        # Assert
        assert token.access_token == "access-alice"

    async def test_non_retryable_error_fails(
        self, device_flow: DeviceFlow, device_code: DeviceCodeResponse, idp
    ) -> None:
        """Given invalid_client, raises ProviderUnreachableError without retrying."""
        # Arrange
        idp.device_responses = [(401, {"error": "invalid_client", "error_description": "bad client"}), TOKEN]

        # Act & Assert
        with pytest.raises(ProviderUnreachableError, match="bad client"):
            await device_flow.poll_for_token(device_code)

    async def test_deadline_raises_expired(
        self, broker_config: BrokerConfig, metadata: ProviderMetadata, http_client: httpx.AsyncClient, idp
    ) -> None:
        """Given the code's lifetime passing while pending, raises DeviceFlowExpiredError."""
        # Arrange
        now = [0.0]

        def clock() -> float:
            now[0] += 4.0
            return now[0]

        flow = DeviceFlow(broker_config, metadata, http_client, clock=clock)
        code = DeviceCodeResponse("dc", "UC", "https://idp/activate", None, expires_in=20, interval=0)

        # Act & Assert
        with pytest.raises(DeviceFlowExpiredError):
            await flow.poll_for_token(code)

    async def test_cancel_wakes_sleep_promptly(self, device_flow: DeviceFlow, device_code: DeviceCodeResponse) -> None:
        """Given a 30 s poll interval, setting cancel ends polling within a fraction of a second."""
        # Arrange
        device_code.interval = 30
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        started = time.monotonic()

        # Act
        with pytest.raises(AuthCancelledError):
            await device_flow.poll_for_token(device_code, cancel)

        # Assert
        assert time.monotonic() - started < 1.0
