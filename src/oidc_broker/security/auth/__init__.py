"""Authentication against the OIDC provider.

This module provides:
- Provider discovery (reachability and advertised endpoints)
- Password grant against the token endpoint
- OAuth Device Flow (RFC 8628)
- ID token validation with JWKS caching
"""

from oidc_broker.security.auth.device_flow import (
    DeviceCodeResponse,
    DeviceFlow,
    PollOnceResult,
)
from oidc_broker.security.auth.discovery import (
    Endpoint,
    ProviderMetadata,
    fetch_provider_metadata,
    probe_provider,
)
from oidc_broker.security.auth.jwt_validator import (
    IDTokenValidator,
    check_username,
)
from oidc_broker.security.auth.oidc_client import password_grant
from oidc_broker.security.auth.token_parser import parse_token_response

__all__ = [
    # Discovery
    "Endpoint",
    "ProviderMetadata",
    "fetch_provider_metadata",
    "probe_provider",
    # Token endpoint
    "password_grant",
    "parse_token_response",
    # ID tokens
    "IDTokenValidator",
    "check_username",
    # Device flow
    "DeviceCodeResponse",
    "DeviceFlow",
    "PollOnceResult",
]
