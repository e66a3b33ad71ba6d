"""Microsoft Entra ID provider.

Group memberships are read from Microsoft Graph with the user's access
token, since Entra ID truncates the "groups" claim for users in many
groups. Only security groups are mapped to system groups.

Naming:
- Cloud groups: displayName lower-cased, Graph object id as ugid
- Local groups: displayName starting with "linux-"; the prefix is dropped
  and the group has no ugid, so it maps to an existing local group
"""

from __future__ import annotations

__all__ = [
    "GRAPH_MEMBER_OF_URL",
    "LOCAL_GROUP_PREFIX",
    "MicrosoftEntraIDProvider",
]

import logging
from typing import TYPE_CHECKING, Any

import httpx

from oidc_broker.constants import APP_NAME
from oidc_broker.exceptions import ProviderUnreachableError
from oidc_broker.providers.base import ProviderInfoer
from oidc_broker.providers.group import GroupInfo

if TYPE_CHECKING:
    from oidc_broker.security.token_cache import CachedToken

_logger = logging.getLogger(f"{APP_NAME}.providers.msentraid")

GRAPH_MEMBER_OF_URL = "https://graph.microsoft.com/v1.0/me/memberOf"
LOCAL_GROUP_PREFIX = "linux-"

# Graph pages are followed through @odata.nextLink up to this many requests
_MAX_PAGES = 50


def _to_group(entry: dict[str, Any]) -> GroupInfo | None:
    if not entry.get("securityEnabled"):
        return None
    name = entry.get("displayName")
    if not isinstance(name, str) or not name:
        return None
    name = name.lower()
    if name.startswith(LOCAL_GROUP_PREFIX):
        return GroupInfo(name=name[len(LOCAL_GROUP_PREFIX) :])
    return GroupInfo(name=name, ugid=str(entry.get("id") or ""))


class MicrosoftEntraIDProvider(ProviderInfoer):
    """Entra ID (Azure AD) tenant as identity provider."""

    name = "msentraid"

    def additional_scopes(self) -> list[str]:
        return ["GroupMember.Read.All"]

    def auth_options(self) -> dict[str, str]:
        return {"prompt": "select_account"}

    async def get_groups(self, token: "CachedToken", http_client: httpx.AsyncClient) -> list[GroupInfo]:
        """Fetch security group memberships from Microsoft Graph.

        Raises:
            ProviderUnreachableError: If Graph rejects the token or returns
                an unexpected response.
        """
        headers = {"Authorization": f"Bearer {token.access_token}"}
        url: str | None = GRAPH_MEMBER_OF_URL
        groups: list[GroupInfo] = []
        pages = 0

        while url and pages < _MAX_PAGES:
            pages += 1
            try:
                response = await http_client.get(url, headers=headers)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                raise ProviderUnreachableError(
                    f"Microsoft Graph returned HTTP {e.response.status_code} for group memberships"
                ) from e
            except httpx.HTTPError as e:
                raise ProviderUnreachableError(f"Cannot reach Microsoft Graph: {type(e).__name__}") from e
            except ValueError as e:
                raise ProviderUnreachableError("Microsoft Graph response is not valid JSON") from e

            if not isinstance(data, dict):
                raise ProviderUnreachableError("Unexpected Microsoft Graph response")
            for entry in data.get("value") or []:
                if isinstance(entry, dict):
                    group = _to_group(entry)
                    if group is not None:
                        groups.append(group)
            url = data.get("@odata.nextLink")

        if url:
            _logger.warning(
                {
                    "event": "group_pages_truncated",
                    "message": f"Stopped reading group memberships after {_MAX_PAGES} pages",
                }
            )
        return groups
