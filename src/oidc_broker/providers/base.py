"""Provider capability interface.

Each supported identity provider family implements ProviderInfoer. The
broker only talks to providers through this interface; the variant is
chosen once, from configuration.
"""

from __future__ import annotations

__all__ = ["ProviderInfoer"]

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AbstractSet, Iterable, Mapping

from oidc_broker.broker.authmodes import AuthModeOffer, filter_by_ui_layouts
from oidc_broker.broker.decider import SessionPurpose, StepResult, decide_auth_modes
from oidc_broker.providers.group import GroupInfo, groups_from_claims

if TYPE_CHECKING:
    import httpx

    from oidc_broker.security.auth.discovery import Endpoint
    from oidc_broker.security.token_cache import CachedToken


class ProviderInfoer(ABC):
    """Provider-specific behavior used by the broker."""

    #: Registry name, also accepted in the "provider" config key
    name: str = ""

    def additional_scopes(self) -> list[str]:
        """Scopes to request on top of the defaults."""
        return []

    def auth_options(self) -> dict[str, str]:
        """Extra authorization request parameters."""
        return {}

    def current_authentication_modes_offered(
        self,
        purpose: SessionPurpose,
        supported_ui_layouts: Iterable[Mapping[str, str] | str],
        token_exists: bool,
        provider_reachable: bool,
        endpoints: AbstractSet["Endpoint"],
        current_auth_step: int,
        last_result: StepResult = StepResult.NONE,
        qr_enabled: bool = True,
    ) -> list[AuthModeOffer]:
        """Modes to offer, filtered by the layouts the client supports.

        Variants with quirks override this and adjust the common policy.
        """
        modes = decide_auth_modes(
            purpose,
            token_exists,
            provider_reachable,
            endpoints,
            current_auth_step,
            last_result,
            qr_enabled,
        )
        return filter_by_ui_layouts(modes, supported_ui_layouts)

    @abstractmethod
    async def get_groups(self, token: "CachedToken", http_client: "httpx.AsyncClient") -> list[GroupInfo]:
        """Groups for a freshly validated token; may contact the provider."""

    def get_offline_groups(self, token: "CachedToken") -> list[GroupInfo]:
        """Groups for a cached token, without network access."""
        return groups_from_claims(token.claims)
