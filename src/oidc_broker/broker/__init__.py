"""Broker core: authentication modes, mode decision, flows and sessions.

The session table lives in oidc_broker.broker.session (Broker); import it
from there. This package re-exports only the pure parts so providers can
depend on them without import cycles.
"""

from oidc_broker.broker.authmodes import (
    DEVICE,
    DEVICE_QR,
    NEW_PASSWORD,
    PASSWORD,
    AuthModeOffer,
)
from oidc_broker.broker.decider import (
    SessionPurpose,
    StepResult,
    decide_auth_modes,
    require_auth_modes,
)

__all__ = [
    # Modes
    "DEVICE",
    "DEVICE_QR",
    "NEW_PASSWORD",
    "PASSWORD",
    "AuthModeOffer",
    # Decision
    "SessionPurpose",
    "StepResult",
    "decide_auth_modes",
    "require_auth_modes",
]
