"""Fixtures for broker session tests."""

from __future__ import annotations

import httpx
import pytest

from oidc_broker.broker.session import Broker
from oidc_broker.config import BrokerConfig
from oidc_broker.providers import GenericProvider
from oidc_broker.security.token_cache import TokenCache


@pytest.fixture
async def broker(broker_config: BrokerConfig, token_cache: TokenCache, http_client: httpx.AsyncClient):
    """Broker against the fake provider, answering device waits after 0.2 s."""
    broker = Broker(
        broker_config,
        cache=token_cache,
        http_client=http_client,
        provider=GenericProvider(),
        is_authenticated_wait=0.2,
    )
    yield broker
    await broker.shutdown()
