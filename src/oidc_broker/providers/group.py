"""Group memberships derived from tokens."""

from __future__ import annotations

__all__ = [
    "GroupInfo",
    "GroupResolver",
    "groups_from_claims",
]

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from oidc_broker.constants import APP_NAME
from oidc_broker.exceptions import BrokerError

if TYPE_CHECKING:
    from oidc_broker.providers.base import ProviderInfoer
    from oidc_broker.security.token_cache import CachedToken

_logger = logging.getLogger(f"{APP_NAME}.providers.group")


@dataclass(frozen=True)
class GroupInfo:
    """A group the user belongs to.

    Attributes:
        name: Group name as it should appear on the system.
        ugid: Provider-side unique group identifier ("" for local groups).
    """

    name: str
    ugid: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "ugid": self.ugid}


def groups_from_claims(claims: dict[str, Any]) -> list[GroupInfo]:
    """Read the "groups" claim.

    String entries become groups without ugid; object entries use their
    "name" and "id" (or "ugid") keys. Anything else is ignored.
    """
    raw = claims.get("groups")
    if not isinstance(raw, list):
        return []

    groups = []
    for entry in raw:
        if isinstance(entry, str) and entry:
            groups.append(GroupInfo(name=entry))
        elif isinstance(entry, dict) and entry.get("name"):
            groups.append(GroupInfo(name=str(entry["name"]), ugid=str(entry.get("id") or entry.get("ugid") or "")))
    return groups


class GroupResolver:
    """Resolves a user's groups through the configured provider.

    Group lookup runs after the provider accepted the credential, so its
    failure does not undo the login: it is logged and no groups are
    returned.
    """

    def __init__(self, provider: "ProviderInfoer", http_client: httpx.AsyncClient) -> None:
        self._provider = provider
        self._client = http_client

    async def resolve(self, token: "CachedToken", online: bool = True) -> list[GroupInfo]:
        """Return de-duplicated groups for a validated token.

        Args:
            token: Token with validated claims.
            online: Whether the provider may be contacted.
        """
        try:
            if online:
                groups = await self._provider.get_groups(token, self._client)
            else:
                groups = self._provider.get_offline_groups(token)
        except (BrokerError, httpx.HTTPError) as e:
            _logger.warning(
                {
                    "event": "group_lookup_failed",
                    "message": f"Could not resolve groups: {e}",
                    "error_type": type(e).__name__,
                }
            )
            return []

        seen: set[str] = set()
        unique = []
        for group in groups:
            if group.name in seen:
                continue
            seen.add(group.name)
            unique.append(group)
        return unique
