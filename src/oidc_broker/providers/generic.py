"""Generic OIDC provider.

Works with any standards-compliant issuer. Groups come from the "groups"
claim of the validated ID token.
"""

from __future__ import annotations

__all__ = ["GenericProvider"]

from typing import TYPE_CHECKING

from oidc_broker.providers.base import ProviderInfoer
from oidc_broker.providers.group import GroupInfo, groups_from_claims

if TYPE_CHECKING:
    import httpx

    from oidc_broker.security.token_cache import CachedToken


class GenericProvider(ProviderInfoer):
    """Provider without vendor extensions."""

    name = "generic"

    async def get_groups(self, token: "CachedToken", http_client: "httpx.AsyncClient") -> list[GroupInfo]:
        return groups_from_claims(token.claims)
