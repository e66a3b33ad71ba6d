"""Custom exceptions for oidc-broker.

This module contains all custom exceptions used throughout the package.
Exceptions are organized into three categories:

Protocol Misuse (raised to the transport, caller retries correctly):
    - UnknownSessionError: Session ID is not live
    - WrongStateError: Operation not valid in the session's current state
    - NoModeAvailableError: No authentication mode can be offered

Authentication Failures (reported as a "denied" result):
    - AuthDeniedError: Bad credential or authorization refused
    - ProviderUnreachableError: Network/provider failure
    - DeviceFlowExpiredError: Device code expired before confirmation
    - CacheWriteError: Token could not be persisted
    - NewPasswordValidationError: New local password violates policy

Startup Failures:
    - ConfigurationError: Broker configuration is invalid or incomplete

Usage:
    from oidc_broker.exceptions import AuthDeniedError, UnknownSessionError
"""

from __future__ import annotations

__all__ = [
    "AuthCancelledError",
    "AuthDeniedError",
    "AuthInProgressError",
    "BrokerError",
    "CacheReadError",
    "CacheWriteError",
    "ConfigurationError",
    "DeviceFlowDeniedError",
    "DeviceFlowExpiredError",
    "InvalidPurposeError",
    "NewPasswordValidationError",
    "NoModeAvailableError",
    "ProviderUnreachableError",
    "TokenNotFoundError",
    "UnknownModeError",
    "UnknownSessionError",
    "UsernameMismatchError",
    "WrongStateError",
]


class BrokerError(Exception):
    """Base class for all broker errors.

    Attributes:
        reason: Short machine-readable code reported to the host in
            "denied" results and used as the log event detail.
        message: Human-readable description.
    """

    reason: str = "error"

    def __init__(self, message: str | None = None) -> None:
        default = (self.__class__.__doc__ or self.reason).strip().splitlines()[0]
        self.message = message or default
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Protocol Misuse (raised to the caller)
# =============================================================================


class UnknownSessionError(BrokerError):
    """Session ID is not a live session."""

    reason = "unknown_session"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Unknown session: {session_id}")


class WrongStateError(BrokerError):
    """Operation is not allowed in the session's current state."""

    reason = "wrong_state"


class AuthInProgressError(WrongStateError):
    """An IsAuthenticated call is already outstanding for this session."""


class UnknownModeError(WrongStateError):
    """Selected authentication mode was not among the offered modes."""


class InvalidPurposeError(WrongStateError):
    """Session purpose is not one the broker supports."""


class NoModeAvailableError(BrokerError):
    """No authentication mode is available for this session step.

    Attributes:
        provider_unreachable: True when the empty result is caused by
            the provider being unreachable without a cached token.
    """

    reason = "no_mode_available"

    def __init__(self, message: str | None = None, *, provider_unreachable: bool = False) -> None:
        self.provider_unreachable = provider_unreachable
        super().__init__(message)


# =============================================================================
# Authentication Failures (reported as "denied")
# =============================================================================


class AuthDeniedError(BrokerError):
    """Credential rejected."""

    reason = "invalid_credentials"


class DeviceFlowDeniedError(AuthDeniedError):
    """User denied the device authorization request."""

    reason = "denied"


class UsernameMismatchError(AuthDeniedError):
    """Identity returned by the provider does not match the session user."""

    reason = "username_mismatch"


class ProviderUnreachableError(BrokerError):
    """Identity provider could not be reached or answered with an error."""

    reason = "provider_unreachable"


class DeviceFlowExpiredError(BrokerError):
    """Device code expired before the user confirmed the login."""

    reason = "expired"


class CacheWriteError(BrokerError):
    """Token could not be written to the local cache."""

    reason = "cache_write_failed"


class CacheReadError(BrokerError):
    """Cached token exists but cannot be decrypted or parsed."""

    reason = "cache_read_failed"


class TokenNotFoundError(BrokerError):
    """No cached token for this user."""

    reason = "no_cached_token"


class NewPasswordValidationError(BrokerError):
    """New local password violates the password policy."""

    reason = "invalid_password"


class AuthCancelledError(BrokerError):
    """Authentication attempt was cancelled by the caller."""

    reason = "cancelled"


# =============================================================================
# Startup Failures
# =============================================================================


class ConfigurationError(BrokerError):
    """Configuration is invalid or incomplete.

    Raised when:
    - Config file does not exist
    - A required section or key is missing
    - A value fails Pydantic validation

    Exit code 16 indicates configuration failure.
    """

    reason = "configuration_error"
    exit_code: int = 16
