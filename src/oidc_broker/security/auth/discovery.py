"""OIDC provider discovery.

Fetches {issuer}/.well-known/openid-configuration. A successful fetch is
what the broker calls "provider reachable"; the advertised endpoints decide
which online authentication modes can be offered.
"""

from __future__ import annotations

__all__ = [
    "Endpoint",
    "ProviderMetadata",
    "fetch_provider_metadata",
    "probe_provider",
]

import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from oidc_broker.constants import APP_NAME, PROVIDER_PROBE_TIMEOUT_SECONDS
from oidc_broker.exceptions import ProviderUnreachableError

_logger = logging.getLogger(f"{APP_NAME}.auth.discovery")

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class Endpoint(str, Enum):
    """Provider endpoints relevant to mode decisions."""

    TOKEN = "token"
    DEVICE_AUTHORIZATION = "device_authorization"


@dataclass(frozen=True)
class ProviderMetadata:
    """Subset of the OIDC discovery document used by the broker.

    Attributes:
        issuer: Issuer identifier as advertised (used for "iss" validation).
        token_endpoint: OAuth token endpoint.
        device_authorization_endpoint: RFC 8628 endpoint, if supported.
        jwks_uri: Signing keys for ID tokens.
        userinfo_endpoint: OIDC userinfo endpoint, if advertised.
    """

    issuer: str
    token_endpoint: str | None
    device_authorization_endpoint: str | None
    jwks_uri: str | None
    userinfo_endpoint: str | None = None

    @classmethod
    def from_response(cls, data: dict, fallback_issuer: str) -> "ProviderMetadata":
        """Parse from a discovery document."""
        return cls(
            issuer=data.get("issuer") or fallback_issuer,
            token_endpoint=data.get("token_endpoint"),
            device_authorization_endpoint=data.get("device_authorization_endpoint"),
            jwks_uri=data.get("jwks_uri"),
            userinfo_endpoint=data.get("userinfo_endpoint"),
        )

    @property
    def endpoints(self) -> frozenset[Endpoint]:
        """Endpoints the provider advertises."""
        found = set()
        if self.token_endpoint:
            found.add(Endpoint.TOKEN)
        if self.device_authorization_endpoint:
            found.add(Endpoint.DEVICE_AUTHORIZATION)
        return frozenset(found)


async def fetch_provider_metadata(
    client: httpx.AsyncClient,
    issuer: str,
    timeout: float = PROVIDER_PROBE_TIMEOUT_SECONDS,
) -> ProviderMetadata:
    """Fetch and parse the discovery document.

    Args:
        client: Shared HTTP client.
        issuer: Configured issuer URL.
        timeout: Request timeout in seconds.

    Returns:
        ProviderMetadata for the issuer.

    Raises:
        ProviderUnreachableError: On network errors, HTTP errors or an
            unparseable document.
    """
    url = f"{issuer.rstrip('/')}{WELL_KNOWN_PATH}"
    try:
        response = await client.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as e:
        raise ProviderUnreachableError(
            f"Identity provider returned HTTP {e.response.status_code} for {url}"
        ) from e
    except httpx.HTTPError as e:
        raise ProviderUnreachableError(f"Cannot reach identity provider at {url}: {type(e).__name__}") from e
    except ValueError as e:
        raise ProviderUnreachableError(f"Invalid discovery document at {url}") from e

    if not isinstance(data, dict):
        raise ProviderUnreachableError(f"Invalid discovery document at {url}")
    return ProviderMetadata.from_response(data, fallback_issuer=issuer)


async def probe_provider(client: httpx.AsyncClient, issuer: str) -> ProviderMetadata | None:
    """Check reachability, returning metadata or None when unreachable."""
    try:
        return await fetch_provider_metadata(client, issuer)
    except ProviderUnreachableError as e:
        _logger.info({"event": "provider_unreachable", "issuer": issuer, "message": str(e)})
        return None
