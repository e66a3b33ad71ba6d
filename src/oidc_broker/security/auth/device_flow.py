"""OAuth Device Authorization Flow (RFC 8628).

The user confirms the login on a second device (phone, laptop) while the
broker polls the token endpoint.

Flow:
1. Request device code from the provider
2. Show the user "Go to https://... and enter code: XXXX-XXXX" (or a QR code)
3. Poll token endpoint until the user completes authentication, the code
   expires, the user denies, or the attempt is cancelled
"""

from __future__ import annotations

__all__ = [
    "DeviceCodeResponse",
    "DeviceFlow",
    "PollOnceResult",
]

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Mapping, Sequence

import httpx

from oidc_broker.constants import (
    APP_NAME,
    DEVICE_FLOW_MAX_TRANSPORT_ERRORS,
    DEVICE_FLOW_POLL_INTERVAL_SECONDS,
    DEVICE_FLOW_SLOW_DOWN_SECONDS,
    DEVICE_FLOW_TIMEOUT_SECONDS,
)
from oidc_broker.exceptions import (
    DeviceFlowDeniedError,
    DeviceFlowExpiredError,
    ProviderUnreachableError,
)
from oidc_broker.security.auth.token_parser import parse_token_response
from oidc_broker.security.token_cache import CachedToken
from oidc_broker.utils.cancellation import check_cancelled, run_cancellable, sleep_cancellable

if TYPE_CHECKING:
    from oidc_broker.config import BrokerConfig
    from oidc_broker.security.auth.discovery import ProviderMetadata

_logger = logging.getLogger(f"{APP_NAME}.auth.device_flow")

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


@dataclass
class DeviceCodeResponse:
    """Response from device authorization request.

    Attributes:
        device_code: Code used to poll for tokens (don't show to user).
        user_code: Code user enters in browser (e.g., "HDFC-LQRT").
        verification_uri: URL user opens to authenticate.
        verification_uri_complete: URL with code embedded (optional).
        expires_in: Seconds until codes expire.
        interval: Polling interval in seconds.
    """

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None
    expires_in: int
    interval: int

    @classmethod
    def from_response(cls, data: dict) -> "DeviceCodeResponse":
        """Parse from provider response.

        Accepts "verification_url", which some providers send instead of
        the RFC name.
        """
        return cls(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data.get("verification_uri") or data["verification_url"],
            verification_uri_complete=data.get("verification_uri_complete"),
            expires_in=int(data["expires_in"]),
            interval=int(data.get("interval", DEVICE_FLOW_POLL_INTERVAL_SECONDS)),
        )


@dataclass(frozen=True)
class PollOnceResult:
    """Result of a single poll attempt.

    Attributes:
        status: "pending", "slow_down", "complete", "expired", "denied", or "error".
        token: Token if status is "complete", None otherwise.
        error_message: Error message if status is "expired", "denied", or "error".
        transient: True for "error" results worth retrying (transport errors, 5xx).
    """

    status: str
    token: CachedToken | None = None
    error_message: str | None = None
    transient: bool = False


class DeviceFlow:
    """OAuth Device Authorization Flow implementation.

    Usage:
        flow = DeviceFlow(config, metadata, http_client)

        # Start flow - display code to user
        device_code = await flow.request_device_code(scopes)

        # Wait for user to authenticate (cancel is the session's cancel event)
        token = await flow.poll_for_token(device_code, cancel)
    """

    def __init__(
        self,
        config: "BrokerConfig",
        metadata: "ProviderMetadata",
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize device flow.

        Args:
            config: Broker configuration with client_id.
            metadata: Discovered provider metadata.
            http_client: Shared async HTTP client.
            clock: Monotonic clock (injectable for tests).
        """
        self._config = config
        self._metadata = metadata
        self._client = http_client
        self._clock = clock

    async def request_device_code(
        self,
        scopes: Sequence[str],
        extra_params: Mapping[str, str] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> DeviceCodeResponse:
        """Request a device code from the provider.

        Args:
            scopes: Scopes to request.
            extra_params: Provider-specific authorization parameters.
            cancel: Cancel event for the attempt.

        Returns:
            DeviceCodeResponse with user_code and verification_uri.

        Raises:
            ProviderUnreachableError: If the provider has no device endpoint
                or the request fails.
            AuthCancelledError: If cancelled during the request.
        """
        url = self._metadata.device_authorization_endpoint
        if not url:
            raise ProviderUnreachableError("Identity provider does not support device authorization")

        data = {"client_id": self._config.client_id, "scope": " ".join(scopes)}
        if extra_params:
            data.update(extra_params)

        try:
            response = await run_cancellable(self._client.post(url, data=data), cancel)
            response.raise_for_status()
            return DeviceCodeResponse.from_response(response.json())

        except httpx.HTTPStatusError as e:
            error_data = {}
            try:
                error_data = e.response.json()
            except ValueError:
                pass  # Non-JSON error body
            error_msg = error_data.get("error_description", str(e)) if isinstance(error_data, dict) else str(e)
            raise ProviderUnreachableError(f"Failed to request device code: {error_msg}") from e

        except httpx.HTTPError as e:
            raise ProviderUnreachableError(f"HTTP error requesting device code: {type(e).__name__}") from e

        except (KeyError, TypeError, ValueError) as e:
            raise ProviderUnreachableError(f"Invalid device code response: {e}") from e

    async def poll_once(
        self,
        device_code: DeviceCodeResponse,
        cancel: asyncio.Event | None = None,
    ) -> PollOnceResult:
        """Poll token endpoint once.

        Args:
            device_code: Response from request_device_code().
            cancel: Cancel event for the attempt.

        Returns:
            PollOnceResult with status and token (if complete).
        """
        url = self._metadata.token_endpoint
        if not url:
            return PollOnceResult(status="error", error_message="Identity provider has no token endpoint")

        try:
            response = await run_cancellable(
                self._client.post(
                    url,
                    data={
                        "grant_type": DEVICE_CODE_GRANT_TYPE,
                        "device_code": device_code.device_code,
                        "client_id": self._config.client_id,
                    },
                ),
                cancel,
            )
        except httpx.HTTPError as e:
            return PollOnceResult(
                status="error",
                error_message=f"HTTP error polling for token: {type(e).__name__}",
                transient=True,
            )

        if response.status_code == 200:
            try:
                token = parse_token_response(response.json())
            except ValueError:
                return PollOnceResult(status="error", error_message="Token response is not valid JSON")
            except ProviderUnreachableError as e:
                return PollOnceResult(status="error", error_message=str(e))
            return PollOnceResult(status="complete", token=token)

        try:
            error_data = response.json()
        except ValueError:
            return PollOnceResult(
                status="error",
                error_message=f"Token request failed with status {response.status_code}",
                transient=response.status_code >= 500,
            )

        error = error_data.get("error", "") if isinstance(error_data, dict) else ""

        if error == "authorization_pending":
            return PollOnceResult(status="pending")

        if error == "slow_down":
            return PollOnceResult(status="slow_down")

        if error == "expired_token":
            return PollOnceResult(status="expired", error_message="Device code expired")

        if error == "access_denied":
            return PollOnceResult(status="denied", error_message="Authorization was denied")

        error_desc = error_data.get("error_description", error) if isinstance(error_data, dict) else ""
        return PollOnceResult(
            status="error",
            error_message=f"Token request failed: {error_desc or response.status_code}",
            transient=response.status_code >= 500,
        )

    async def poll_for_token(
        self,
        device_code: DeviceCodeResponse,
        cancel: asyncio.Event | None = None,
        timeout: int = DEVICE_FLOW_TIMEOUT_SECONDS,
        max_transport_errors: int = DEVICE_FLOW_MAX_TRANSPORT_ERRORS,
    ) -> CachedToken:
        """Poll token endpoint until the flow finishes.

        Waits interval seconds between polls, honoring the provider's
        expiry, and wakes immediately when cancel is set.

        Args:
            device_code: Response from request_device_code().
            cancel: Cancel event for the attempt.
            timeout: Upper bound in seconds, applied on top of expires_in.
            max_transport_errors: Consecutive transient errors tolerated.

        Returns:
            CachedToken from the provider.

        Raises:
            DeviceFlowExpiredError: If the code expires or the deadline passes.
            DeviceFlowDeniedError: If the user denies authorization.
            ProviderUnreachableError: After too many consecutive transport
                errors, or on a non-retryable provider error.
            AuthCancelledError: If cancel is set.
        """
        interval = device_code.interval
        deadline = self._clock() + min(timeout, device_code.expires_in)
        consecutive_errors = 0

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await sleep_cancellable(min(interval, remaining), cancel)
            if self._clock() >= deadline:
                break

            result = await self.poll_once(device_code, cancel)
            check_cancelled(cancel)

            if result.status == "complete" and result.token is not None:
                return result.token

            if result.status == "pending":
                consecutive_errors = 0
                continue

            if result.status == "slow_down":
                consecutive_errors = 0
                interval += DEVICE_FLOW_SLOW_DOWN_SECONDS
                continue

            if result.status == "expired":
                raise DeviceFlowExpiredError("Device code expired before the login was confirmed")

            if result.status == "denied":
                raise DeviceFlowDeniedError("Device authorization was denied")

            if result.transient:
                consecutive_errors += 1
                _logger.warning(
                    {
                        "event": "device_poll_error",
                        "message": result.error_message,
                        "consecutive_errors": consecutive_errors,
                    }
                )
                if consecutive_errors > max_transport_errors:
                    raise ProviderUnreachableError(
                        f"Giving up device login after {consecutive_errors} consecutive errors: "
                        f"{result.error_message}"
                    )
                continue

            raise ProviderUnreachableError(result.error_message or "Device login failed")

        raise DeviceFlowExpiredError(
            f"Device code expired after {min(timeout, device_code.expires_in)} seconds without confirmation"
        )
