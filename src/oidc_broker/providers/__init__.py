"""Identity provider variants.

The variant is chosen once from configuration: the [oidc] provider key
when set, otherwise inferred from the issuer host.
"""

from __future__ import annotations

__all__ = [
    "PROVIDERS",
    "GenericProvider",
    "GroupInfo",
    "GroupResolver",
    "MicrosoftEntraIDProvider",
    "ProviderInfoer",
    "get_provider",
    "provider_for_config",
]

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from oidc_broker.exceptions import ConfigurationError
from oidc_broker.providers.base import ProviderInfoer
from oidc_broker.providers.generic import GenericProvider
from oidc_broker.providers.group import GroupInfo, GroupResolver
from oidc_broker.providers.msentraid import MicrosoftEntraIDProvider

if TYPE_CHECKING:
    from oidc_broker.config import BrokerConfig

PROVIDERS: dict[str, type[ProviderInfoer]] = {
    GenericProvider.name: GenericProvider,
    MicrosoftEntraIDProvider.name: MicrosoftEntraIDProvider,
}

# Issuer hosts that imply a provider variant
_ISSUER_HOSTS: dict[str, str] = {
    "login.microsoftonline.com": MicrosoftEntraIDProvider.name,
}


def get_provider(name: str) -> ProviderInfoer:
    """Instantiate a provider variant by registry name.

    Raises:
        ConfigurationError: If the name is not registered.
    """
    try:
        return PROVIDERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown provider {name!r} (expected one of {', '.join(sorted(PROVIDERS))})"
        ) from None


def provider_for_config(config: "BrokerConfig") -> ProviderInfoer:
    """Pick the provider for a configuration."""
    if config.provider:
        return get_provider(config.provider)
    host = (urlparse(config.issuer).hostname or "").lower()
    return get_provider(_ISSUER_HOSTS.get(host, GenericProvider.name))
