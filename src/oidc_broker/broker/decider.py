"""Authentication mode decision.

Pure policy: given what is known about the session and the provider,
return the ordered list of modes to offer. No I/O happens here.

Precedence:
1. Second step of a session that sets a local password: only "newpassword".
2. Provider unreachable: "password" (against the cache) if a token is cached.
3. Provider reachable: "password", plus device modes the provider supports.

An empty result means no mode is available; callers turn it into
NoModeAvailableError.
"""

from __future__ import annotations

__all__ = [
    "SessionPurpose",
    "StepResult",
    "decide_auth_modes",
    "require_auth_modes",
]

from enum import Enum
from typing import AbstractSet

from oidc_broker.broker.authmodes import DEVICE, DEVICE_QR, MODE_ORDER, NEW_PASSWORD, PASSWORD
from oidc_broker.exceptions import NoModeAvailableError
from oidc_broker.security.auth.discovery import Endpoint


class SessionPurpose(str, Enum):
    """Why the session was opened."""

    LOGIN = "login"
    LOGIN_WITH_PASSWORD_SETUP = "login-with-local-password-setup"
    PASSWD = "passwd"

    @property
    def sets_local_password(self) -> bool:
        """Whether a successful first step is followed by "newpassword"."""
        return self in (SessionPurpose.LOGIN_WITH_PASSWORD_SETUP, SessionPurpose.PASSWD)


class StepResult(str, Enum):
    """How the previous step of a session ended."""

    NONE = "none"
    AUTHENTICATED = "authenticated"
    DENIED = "denied"


def _ordered(modes: set[str]) -> list[str]:
    return [mode for mode in MODE_ORDER if mode in modes]


def decide_auth_modes(
    purpose: SessionPurpose,
    token_exists: bool,
    provider_reachable: bool,
    supported_endpoints: AbstractSet[Endpoint],
    step: int,
    last_result: StepResult = StepResult.NONE,
    qr_enabled: bool = True,
) -> list[str]:
    """Compute the ordered modes to offer for the current step.

    A passwd session whose user has a cached token is offered only the
    local password at step 0: changing a local password proves knowledge
    of the current one, never of the provider password. Without a cached
    token it falls back to the online rules.

    Args:
        purpose: Session purpose.
        token_exists: Whether the user has a cached token.
        provider_reachable: Whether the provider answered discovery.
        supported_endpoints: Endpoints the provider advertises.
        step: Number of steps already completed in this session.
        last_result: Outcome of the previous step.
        qr_enabled: Whether this deployment allows QR code rendering.

    Returns:
        Mode identifiers in preference order; empty if none is available.
    """
    if step > 0 and last_result == StepResult.AUTHENTICATED:
        if purpose.sets_local_password and step == 1:
            return [NEW_PASSWORD]
        # Login already complete, nothing left to authenticate
        return []

    # Changing the local password starts from the local password when possible
    if purpose == SessionPurpose.PASSWD and token_exists:
        return [PASSWORD]

    modes: set[str] = set()
    if provider_reachable:
        # Password is always offered online; without a token endpoint the
        # password is checked against the cache instead
        modes.add(PASSWORD)
        if Endpoint.DEVICE_AUTHORIZATION in supported_endpoints:
            modes.add(DEVICE)
            if qr_enabled:
                modes.add(DEVICE_QR)
    elif token_exists:
        modes.add(PASSWORD)

    return _ordered(modes)


def require_auth_modes(
    purpose: SessionPurpose,
    token_exists: bool,
    provider_reachable: bool,
    supported_endpoints: AbstractSet[Endpoint],
    step: int,
    last_result: StepResult = StepResult.NONE,
    qr_enabled: bool = True,
) -> list[str]:
    """Like decide_auth_modes, but raise when nothing can be offered.

    Raises:
        NoModeAvailableError: If the decided list is empty.
    """
    modes = decide_auth_modes(
        purpose,
        token_exists,
        provider_reachable,
        supported_endpoints,
        step,
        last_result,
        qr_enabled,
    )
    if not modes:
        if not provider_reachable and not token_exists:
            raise NoModeAvailableError(
                "Identity provider is unreachable and no cached credential exists",
                provider_unreachable=True,
            )
        raise NoModeAvailableError("No authentication mode is available for this session")
    return modes
