"""Shared fixtures: broker configuration, token cache and a fake identity provider.

The fake provider answers discovery, JWKS, token and device authorization
requests through httpx.MockTransport, and signs ID tokens with a test RSA key.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import jwt
import pytest
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from oidc_broker.config import BrokerConfig
from oidc_broker.security import password as password_module
from oidc_broker.security.token_cache import CachedToken, TokenCache

ISSUER = "https://idp.example.com"
CLIENT_ID = "test-client-id"
KEY_ID = "test-key"


# ============================================================================
# Fake identity provider
# ============================================================================


class FakeIdP:
    """Scriptable OIDC provider for httpx.MockTransport.

    Attributes:
        reachable: False makes every request fail with a connection error.
        device_supported: Whether discovery advertises the device endpoint.
        token_supported: Whether discovery advertises the token endpoint.
        passwords: username -> password accepted by the password grant.
        device_responses: Scripted (status, body) answers for device polls;
            polls past the end of the script get authorization_pending.
        device_interval: Poll interval in the device code response.
        requests: Every request seen, for assertions.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey) -> None:
        self.private_key = private_key
        self.issuer = ISSUER
        self.client_id = CLIENT_ID
        self.reachable = True
        self.device_supported = True
        self.token_supported = True
        self.passwords: dict[str, str] = {}
        self.claims: dict[str, dict[str, Any]] = {}
        self.device_user = "alice"
        self.device_responses: list[tuple[int, dict[str, Any]] | Exception] = []
        self.device_interval = 0
        self.device_expires_in = 900
        self.requests: list[httpx.Request] = []

    def id_token(self, username: str, **overrides: Any) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": f"sub-{username}",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(hours=1)).timestamp()),
            "preferred_username": username,
            "name": username.title(),
            "groups": ["staff"],
        }
        payload.update(self.claims.get(username, {}))
        payload.update(overrides)
        return jwt.encode(payload, self.private_key, algorithm="RS256", headers={"kid": KEY_ID})

    def token_body(self, username: str) -> dict[str, Any]:
        return {
            "access_token": f"access-{username}",
            "refresh_token": f"refresh-{username}",
            "id_token": self.id_token(username),
            "token_type": "Bearer",
            "expires_in": 3600,
        }

    def jwks(self) -> dict[str, Any]:
        jwk = RSAAlgorithm.to_jwk(self.private_key.public_key(), as_dict=True)
        jwk.update({"kid": KEY_ID, "use": "sig", "alg": "RS256"})
        return {"keys": [jwk]}

    def discovery(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"issuer": ISSUER, "jwks_uri": f"{ISSUER}/jwks"}
        if self.token_supported:
            doc["token_endpoint"] = f"{ISSUER}/token"
        if self.device_supported:
            doc["device_authorization_endpoint"] = f"{ISSUER}/device"
        return doc

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.reachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=self.discovery())
        if path == "/jwks":
            return httpx.Response(200, json=self.jwks())
        if path == "/device":
            return httpx.Response(
                200,
                json={
                    "device_code": "device-code-123",
                    "user_code": "ABCD-EFGH",
                    "verification_uri": f"{ISSUER}/activate",
                    "verification_uri_complete": f"{ISSUER}/activate?user_code=ABCD-EFGH",
                    "expires_in": self.device_expires_in,
                    "interval": self.device_interval,
                },
            )
        if path == "/token":
            form = dict(httpx.QueryParams(request.content.decode()))
            if form.get("grant_type") == "password":
                username = form.get("username", "")
                if self.passwords.get(username) == form.get("password"):
                    return httpx.Response(200, json=self.token_body(username))
                return httpx.Response(400, json={"error": "invalid_grant"})
            return self._device_poll(request)
        return httpx.Response(404)

    def _device_poll(self, request: httpx.Request) -> httpx.Response:
        if not self.device_responses:
            return httpx.Response(400, json={"error": "authorization_pending"})
        answer = self.device_responses.pop(0)
        if isinstance(answer, Exception):
            raise answer
        status, body = answer
        if body == {"token": True}:
            body = self.token_body(self.device_user)
        return httpx.Response(status, json=body)

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/token"]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep PBKDF2 cheap in tests."""
    monkeypatch.setattr(password_module, "PASSWORD_HASH_ITERATIONS", 1_000)


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key for signing test ID tokens."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def idp(rsa_private_key: rsa.RSAPrivateKey) -> FakeIdP:
    """Fake identity provider knowing alice's password."""
    fake = FakeIdP(rsa_private_key)
    fake.passwords["alice"] = "correct horse"
    return fake


@pytest.fixture
async def http_client(idp: FakeIdP):
    """HTTP client routed to the fake provider."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(idp.handler)) as client:
        yield client


@pytest.fixture
def broker_config(tmp_path: Path) -> BrokerConfig:
    """Broker configuration pointing at the fake provider."""
    return BrokerConfig(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        home_base_dir="/home",
        cache_path=tmp_path / "cache",
        provider="generic",
    )


@pytest.fixture
def token_cache(tmp_path: Path) -> TokenCache:
    """Token cache with an explicit key."""
    return TokenCache(tmp_path / "cache", key=Fernet.generate_key())


@pytest.fixture
def cached_token() -> CachedToken:
    """Valid cached token with claims (expires in 1 hour)."""
    now = datetime.now(timezone.utc)
    return CachedToken(
        access_token="test-access-token",
        refresh_token="test-refresh-token",
        id_token="test-id-token",
        expires_at=now + timedelta(hours=1),
        issued_at=now,
        claims={"sub": "sub-alice", "name": "Alice", "groups": ["staff"]},
    )
