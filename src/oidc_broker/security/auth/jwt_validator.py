"""ID token validation with JWKS caching.

Validates OIDC ID tokens using the JWKS (JSON Web Key Set) advertised in
the provider's discovery document. Keys are cached to avoid a fetch on
every login while still picking up key rotation.
"""

from __future__ import annotations

__all__ = [
    "IDTokenValidator",
    "check_username",
]

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import jwt
from jwt import PyJWKSet

from oidc_broker.exceptions import AuthDeniedError, ProviderUnreachableError, UsernameMismatchError
from oidc_broker.utils.cancellation import run_cancellable

if TYPE_CHECKING:
    from oidc_broker.config import BrokerConfig
    from oidc_broker.security.auth.discovery import ProviderMetadata

# JWKS cache lifetime (10 minutes)
JWKS_CACHE_TTL_SECONDS = 600

# Algorithms accepted for ID token signatures
_ALGORITHMS = ["RS256", "RS384", "RS512", "PS256", "ES256", "ES384"]


@dataclass
class _CachedJWKS:
    """Cached key set with expiration tracking."""

    uri: str
    keys: PyJWKSet
    fetched_at: float
    ttl: float = JWKS_CACHE_TTL_SECONDS

    @property
    def is_expired(self) -> bool:
        """Check if cache has expired."""
        return time.monotonic() - self.fetched_at > self.ttl


class IDTokenValidator:
    """Validates ID tokens issued to the broker.

    Checks signature (JWKS), issuer, audience (client_id) and expiry.

    Usage:
        validator = IDTokenValidator(config, http_client)
        claims = await validator.validate(id_token, metadata)
    """

    def __init__(self, config: "BrokerConfig", http_client: httpx.AsyncClient) -> None:
        self._config = config
        self._client = http_client
        self._cache: _CachedJWKS | None = None

    async def _get_key_set(self, jwks_uri: str, cancel: asyncio.Event | None) -> PyJWKSet:
        if self._cache is not None and self._cache.uri == jwks_uri and not self._cache.is_expired:
            return self._cache.keys

        try:
            response = await run_cancellable(self._client.get(jwks_uri, follow_redirects=True), cancel)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ProviderUnreachableError(f"Cannot fetch signing keys from {jwks_uri}: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderUnreachableError(f"Invalid signing keys at {jwks_uri}: {e}") from e

        if not isinstance(data, dict):
            raise ProviderUnreachableError(f"Invalid signing keys at {jwks_uri}: not a JSON object")
        try:
            keys = PyJWKSet.from_dict(data)
        except (ValueError, TypeError, AttributeError, jwt.PyJWTError) as e:
            raise ProviderUnreachableError(f"Invalid signing keys at {jwks_uri}: {e}") from e

        self._cache = _CachedJWKS(uri=jwks_uri, keys=keys, fetched_at=time.monotonic())
        return keys

    async def validate(
        self,
        id_token: str,
        metadata: "ProviderMetadata",
        cancel: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Validate an ID token and return its claims.

        Args:
            id_token: Compact-serialized JWT.
            metadata: Provider metadata (issuer, jwks_uri).
            cancel: Cancel event for the attempt.

        Returns:
            Verified claims.

        Raises:
            AuthDeniedError: If the token is invalid (signature, issuer,
                audience, expiry).
            ProviderUnreachableError: If the signing keys cannot be fetched.
        """
        if not metadata.jwks_uri:
            raise ProviderUnreachableError("Identity provider does not advertise a jwks_uri")

        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.DecodeError as e:
            raise AuthDeniedError(f"ID token is malformed: {e}") from e

        keys = await self._get_key_set(metadata.jwks_uri, cancel)
        kid = header.get("kid")
        try:
            signing_key = keys[kid] if kid else keys.keys[0]
        except (KeyError, IndexError):
            # Unknown kid may mean the provider rotated keys; refetch once
            self._cache = None
            keys = await self._get_key_set(metadata.jwks_uri, cancel)
            try:
                signing_key = keys[kid] if kid else keys.keys[0]
            except (KeyError, IndexError) as e:
                raise AuthDeniedError(f"No signing key matches ID token key id {kid!r}") from e

        try:
            claims: dict[str, Any] = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=_ALGORITHMS,
                issuer=metadata.issuer,
                audience=self._config.client_id,
                options={"require": ["exp", "iat", "sub", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthDeniedError("ID token has expired") from e
        except jwt.InvalidIssuerError as e:
            raise AuthDeniedError(f"ID token issuer mismatch: expected {metadata.issuer}") from e
        except jwt.InvalidAudienceError as e:
            raise AuthDeniedError(f"ID token audience mismatch: expected {self._config.client_id}") from e
        except jwt.InvalidSignatureError as e:
            raise AuthDeniedError("ID token signature is invalid") from e
        except jwt.PyJWTError as e:
            raise AuthDeniedError(f"ID token validation error: {e}") from e

        return claims

    def clear_cache(self) -> None:
        """Forget cached signing keys."""
        self._cache = None


def check_username(username: str, claims: dict[str, Any]) -> None:
    """Ensure the token identifies the user the session was opened for.

    Compares case-insensitively against "preferred_username" and "email".
    Tokens carrying neither claim are accepted.

    Raises:
        UsernameMismatchError: If the claims name a different user.
    """
    candidates = [claims.get(name) for name in ("preferred_username", "email")]
    candidates = [c for c in candidates if isinstance(c, str) and c]
    if not candidates:
        return
    if username.casefold() not in {c.casefold() for c in candidates}:
        raise UsernameMismatchError(
            f"Authenticated identity {candidates[0]!r} does not match requested user {username!r}"
        )
