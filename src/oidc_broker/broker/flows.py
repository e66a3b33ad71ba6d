"""Authentication flows.

One AuthFlow runs one authentication attempt in a selected mode:

- password: password grant at the provider, or the local password
  stored in the cache when the provider cannot be used
- device_auth / device_auth_qr: RFC 8628 device authorization
- newpassword: set the local password guarding offline logins

start() returns the UI layout for the mode. run() does the work and
returns a FlowOutcome, or raises a BrokerError that the session turns into
a "denied" (or "cancelled") answer.

Cache file I/O and password hashing run in worker threads so they never
stall other sessions.
"""

from __future__ import annotations

__all__ = [
    "FlowOutcome",
    "FlowState",
    "AuthFlow",
]

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from oidc_broker.broker.authmodes import DEVICE, DEVICE_QR, MODE_LABELS, MODE_LAYOUTS, NEW_PASSWORD, PASSWORD
from oidc_broker.broker.decider import SessionPurpose
from oidc_broker.constants import APP_NAME, DEFAULT_SCOPES, DEFAULT_SHELL
from oidc_broker.exceptions import (
    AuthCancelledError,
    AuthDeniedError,
    CacheReadError,
    CacheWriteError,
    ProviderUnreachableError,
    TokenNotFoundError,
    UnknownModeError,
)
from oidc_broker.security.auth.device_flow import DeviceCodeResponse, DeviceFlow
from oidc_broker.security.auth.jwt_validator import check_username
from oidc_broker.security.auth.oidc_client import password_grant
from oidc_broker.security.password import hash_password, validate_new_password, verify_password
from oidc_broker.utils.cancellation import check_cancelled

if TYPE_CHECKING:
    import httpx

    from oidc_broker.config import BrokerConfig
    from oidc_broker.providers.base import ProviderInfoer
    from oidc_broker.providers.group import GroupInfo, GroupResolver
    from oidc_broker.security.auth.discovery import ProviderMetadata
    from oidc_broker.security.auth.jwt_validator import IDTokenValidator
    from oidc_broker.security.token_cache import CachedToken, TokenCache

_logger = logging.getLogger(f"{APP_NAME}.broker.flows")


class FlowState(str, Enum):
    """Progress of one attempt."""

    STARTED = "started"
    EXCHANGING = "exchanging"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FlowOutcome:
    """Result of a successful attempt.

    Attributes:
        token: Token now stored in the cache for the user.
        userinfo: User description returned to the host on "granted".
    """

    token: "CachedToken"
    userinfo: dict[str, Any]


class AuthFlow:
    """A single authentication attempt in one mode.

    Usage:
        flow = AuthFlow(PASSWORD, username="alice", ...)
        layout = await flow.start()
        outcome = await flow.run(secret)
    """

    def __init__(
        self,
        mode: str,
        *,
        username: str,
        purpose: SessionPurpose,
        config: "BrokerConfig",
        cache: "TokenCache",
        provider: "ProviderInfoer",
        groups: "GroupResolver",
        validator: "IDTokenValidator",
        http_client: "httpx.AsyncClient",
        metadata: "ProviderMetadata | None",
        token_exists: bool,
        cancel: asyncio.Event,
        previous: FlowOutcome | None = None,
    ) -> None:
        """Initialize flow.

        Args:
            mode: One of the mode identifiers from authmodes.
            username: User the session was opened for.
            purpose: Session purpose.
            config: Broker configuration.
            cache: Token cache.
            provider: Provider variant.
            groups: Group resolver for the provider.
            validator: ID token validator.
            http_client: Shared HTTP client.
            metadata: Provider metadata, None if the provider was unreachable
                when modes were offered.
            token_exists: Whether the user had a cached token at that time.
            cancel: Cancel event for this attempt.
            previous: Outcome of the previous step (needed by newpassword).

        Raises:
            UnknownModeError: If mode is not a known identifier.
        """
        if mode not in MODE_LAYOUTS:
            raise UnknownModeError(f"Unknown authentication mode {mode!r}")
        self.mode = mode
        self.state = FlowState.STARTED
        self._username = username
        self._purpose = purpose
        self._config = config
        self._cache = cache
        self._provider = provider
        self._groups = groups
        self._validator = validator
        self._client = http_client
        self._metadata = metadata
        self._token_exists = token_exists
        self._cancel = cancel
        self._previous = previous
        self._device_code: DeviceCodeResponse | None = None

    @property
    def is_device(self) -> bool:
        """Whether this attempt is a device authorization flow."""
        return self.mode in (DEVICE, DEVICE_QR)

    @property
    def uses_local_password(self) -> bool:
        """Whether a password attempt is checked against the cache."""
        if self.mode != PASSWORD:
            return False
        if self._metadata is None or not self._metadata.token_endpoint:
            return True
        return self._purpose == SessionPurpose.PASSWD and self._token_exists

    def _scopes(self) -> list[str]:
        return [*DEFAULT_SCOPES, *self._provider.additional_scopes()]

    # =========================================================================
    # Layout
    # =========================================================================

    async def start(self) -> dict[str, str]:
        """Prepare the attempt and return its UI layout.

        Device modes request the device code here so the layout can carry
        the verification URI and user code.

        Raises:
            ProviderUnreachableError: If the device code request fails.
            AuthCancelledError: If cancelled during the request.
        """
        layout = {"type": MODE_LAYOUTS[self.mode], "label": MODE_LABELS[self.mode]}

        if self.mode == PASSWORD:
            layout["label"] = "Local password" if self.uses_local_password else "Password"
            layout["entry"] = "chars_password"
            return layout

        if self.mode == NEW_PASSWORD:
            layout["label"] = "Create a local password"
            layout["entry"] = "chars_password"
            return layout

        if self._metadata is None:
            raise ProviderUnreachableError("Device login needs the identity provider")
        device_flow = DeviceFlow(self._config, self._metadata, self._client)
        self._device_code = await device_flow.request_device_code(
            self._scopes(),
            extra_params=self._provider.auth_options(),
            cancel=self._cancel,
        )

        content = self._device_code.verification_uri
        if self.mode == DEVICE_QR:
            layout["label"] = "Scan the QR code or open the link to log in"
            content = self._device_code.verification_uri_complete or content
        else:
            layout["label"] = "Open the link on another device and enter the code"
        layout["content"] = content
        layout["code"] = self._device_code.user_code
        layout["wait"] = "true"
        return layout

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, secret: str | None = None) -> FlowOutcome:
        """Carry out the attempt.

        Args:
            secret: Decrypted secret for password modes, None for device modes.

        Returns:
            FlowOutcome with the stored token and user info.

        Raises:
            BrokerError: Any failure; AuthCancelledError when cancelled.
        """
        try:
            check_cancelled(self._cancel)
            if self.mode == PASSWORD:
                outcome = await self._run_password(secret or "")
            elif self.mode == NEW_PASSWORD:
                outcome = await self._run_new_password(secret or "")
            else:
                outcome = await self._run_device()
        except (AuthCancelledError, asyncio.CancelledError):
            self.state = FlowState.CANCELLED
            raise
        except Exception:
            self.state = FlowState.FAILED
            raise

        self.state = FlowState.SUCCEEDED
        return outcome

    async def _run_password(self, secret: str) -> FlowOutcome:
        self.state = FlowState.EXCHANGING

        if self.uses_local_password:
            token = await self._load_cached()
            if token is None:
                raise AuthDeniedError("No cached credential; the identity provider is needed to log in")
            if not token.password_hash:
                raise AuthDeniedError("No local password is set for this user")
            if not await asyncio.to_thread(verify_password, secret, token.password_hash):
                raise AuthDeniedError("Invalid password")
            check_cancelled(self._cancel)
            groups = await self._groups.resolve(token, online=False)
            return FlowOutcome(token=token, userinfo=self._userinfo(token, groups))

        if self._metadata is None:
            raise ProviderUnreachableError("Identity provider metadata is unavailable")
        token = await password_grant(
            self._client,
            self._config,
            self._metadata,
            self._username,
            secret,
            self._scopes(),
            cancel=self._cancel,
        )
        token = await self._validate(token)
        password_hash = await asyncio.to_thread(hash_password, secret)
        token = token.model_copy(update={"password_hash": password_hash})
        return await self._store_and_describe(token)

    async def _run_device(self) -> FlowOutcome:
        if self._device_code is None or self._metadata is None:
            raise AuthDeniedError("Device login was not started")
        self.state = FlowState.POLLING

        device_flow = DeviceFlow(self._config, self._metadata, self._client)
        token = await device_flow.poll_for_token(self._device_code, self._cancel)

        self.state = FlowState.EXCHANGING
        token = await self._validate(token)
        existing = await self._load_cached()
        if existing is not None and existing.password_hash:
            token = token.model_copy(update={"password_hash": existing.password_hash})
        return await self._store_and_describe(token)

    async def _run_new_password(self, secret: str) -> FlowOutcome:
        self.state = FlowState.EXCHANGING
        if self._previous is None:
            raise AuthDeniedError("Authenticate before setting a local password")

        validate_new_password(secret, self._username)
        password_hash = await asyncio.to_thread(hash_password, secret)
        token = self._previous.token.model_copy(update={"password_hash": password_hash})
        check_cancelled(self._cancel)
        await self._store(token)
        return FlowOutcome(token=token, userinfo=self._previous.userinfo)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _validate(self, token: "CachedToken") -> "CachedToken":
        """Validate the ID token and bind its claims to the record."""
        if not token.id_token:
            raise AuthDeniedError("Identity provider did not return an ID token")
        if self._metadata is None:
            raise ProviderUnreachableError("Identity provider metadata is unavailable")
        claims = await self._validator.validate(token.id_token, self._metadata, self._cancel)
        check_username(self._username, claims)
        return token.model_copy(update={"claims": claims})

    async def _load_cached(self) -> "CachedToken | None":
        try:
            return await asyncio.to_thread(self._cache.load, self._username)
        except TokenNotFoundError:
            return None
        except CacheReadError as e:
            _logger.warning(
                {
                    "event": "cache_read_failed",
                    "message": str(e),
                    "username": self._username,
                }
            )
            return None

    async def _store(self, token: "CachedToken") -> None:
        try:
            await asyncio.to_thread(self._cache.store, self._username, token)
        except CacheWriteError as e:
            _logger.error(
                {
                    "event": "cache_write_failed",
                    "message": str(e),
                    "username": self._username,
                }
            )
            raise
        _logger.debug({"event": "token_cached", "username": self._username})

    async def _store_and_describe(self, token: "CachedToken") -> FlowOutcome:
        check_cancelled(self._cancel)
        await self._store(token)
        groups = await self._groups.resolve(token, online=True)
        return FlowOutcome(token=token, userinfo=self._userinfo(token, groups))

    def _userinfo(self, token: "CachedToken", groups: "list[GroupInfo]") -> dict[str, Any]:
        claims = token.claims
        return {
            "name": self._username,
            "uuid": str(claims.get("sub", "")),
            "gecos": str(claims.get("name", "")),
            "dir": str(PurePosixPath(self._config.home_base_dir) / self._username),
            "shell": DEFAULT_SHELL,
            "groups": [group.to_dict() for group in groups],
        }
