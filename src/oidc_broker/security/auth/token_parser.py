"""Shared OAuth token response parsing.

Used by both the password grant and the device flow.
"""

from __future__ import annotations

__all__ = ["parse_token_response"]

from datetime import datetime, timedelta, timezone
from typing import Any

from oidc_broker.exceptions import ProviderUnreachableError
from oidc_broker.security.token_cache import CachedToken

# Providers omitting expires_in get a conservative one hour
_DEFAULT_EXPIRES_IN = 3600


def parse_token_response(data: dict[str, Any]) -> CachedToken:
    """Parse OAuth token response into CachedToken.

    Handles standard OAuth 2.0 token response fields:
    - access_token (required)
    - refresh_token (optional)
    - id_token (optional, for OIDC)
    - expires_in (optional, defaults to 1h)

    Args:
        data: Token response JSON from OAuth provider.

    Returns:
        CachedToken without password hash or claims.

    Raises:
        ProviderUnreachableError: If the response has no access token.
    """
    access_token = data.get("access_token")
    if not access_token:
        raise ProviderUnreachableError("Token response from identity provider has no access_token")

    now = datetime.now(timezone.utc)
    try:
        expires_in = int(data.get("expires_in", _DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError):
        expires_in = _DEFAULT_EXPIRES_IN

    return CachedToken(
        access_token=access_token,
        refresh_token=data.get("refresh_token"),
        id_token=data.get("id_token"),
        expires_at=now + timedelta(seconds=expires_in),
        issued_at=now,
    )
