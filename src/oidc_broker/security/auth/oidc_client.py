"""Token endpoint client for the interactive password grant.

Submits username and password to the provider's token endpoint
(grant_type=password). Used when the provider is reachable and the user
picked the password mode.
"""

from __future__ import annotations

__all__ = ["password_grant"]

import asyncio
from typing import TYPE_CHECKING, Sequence

import httpx

from oidc_broker.exceptions import AuthDeniedError, ProviderUnreachableError
from oidc_broker.security.auth.token_parser import parse_token_response
from oidc_broker.security.token_cache import CachedToken
from oidc_broker.utils.cancellation import run_cancellable

if TYPE_CHECKING:
    from oidc_broker.config import BrokerConfig
    from oidc_broker.security.auth.discovery import ProviderMetadata

# Token endpoint errors meaning "the credential is wrong", not "the provider is broken"
_DENIAL_ERRORS = frozenset({"invalid_grant", "access_denied", "invalid_request"})


async def password_grant(
    client: httpx.AsyncClient,
    config: "BrokerConfig",
    metadata: "ProviderMetadata",
    username: str,
    password: str,
    scopes: Sequence[str],
    cancel: asyncio.Event | None = None,
) -> CachedToken:
    """Exchange username and password for tokens.

    Args:
        client: Shared HTTP client.
        config: Broker configuration (client_id).
        metadata: Discovered provider metadata.
        username: Login name.
        password: Plaintext password.
        scopes: Scopes to request.
        cancel: Cancel event for the attempt.

    Returns:
        CachedToken from the provider's response.

    Raises:
        AuthDeniedError: If the provider rejects the credential.
        ProviderUnreachableError: On transport errors, missing endpoint or
            unexpected responses.
        AuthCancelledError: If cancelled while the request is in flight.
    """
    if not metadata.token_endpoint:
        raise ProviderUnreachableError("Identity provider does not advertise a token endpoint")

    request = client.post(
        metadata.token_endpoint,
        data={
            "grant_type": "password",
            "client_id": config.client_id,
            "username": username,
            "password": password,
            "scope": " ".join(scopes),
        },
    )
    try:
        response = await run_cancellable(request, cancel)
    except httpx.HTTPError as e:
        raise ProviderUnreachableError(f"HTTP error during password login: {type(e).__name__}") from e

    if response.status_code == 200:
        try:
            return parse_token_response(response.json())
        except ValueError as e:
            raise ProviderUnreachableError("Token response from identity provider is not valid JSON") from e

    error_data: dict = {}
    try:
        error_data = response.json()
    except ValueError:
        pass  # Non-JSON error body, fall through to the status code

    error = error_data.get("error", "") if isinstance(error_data, dict) else ""
    error_desc = error_data.get("error_description", error) if isinstance(error_data, dict) else ""

    if error in _DENIAL_ERRORS or response.status_code in (400, 401):
        raise AuthDeniedError(f"Login rejected by identity provider: {error_desc or error or response.status_code}")

    raise ProviderUnreachableError(
        f"Token request failed with status {response.status_code}: {error_desc or 'no details'}"
    )
