"""Per-session encryption of credential payloads.

Each session gets a fresh Fernet key at creation. The client encrypts the
secret it collects with that key and sends it as the "challenge" field of
the IsAuthenticated payload:

    {"challenge": "<Fernet token>"}

Keys are never reused across sessions.
"""

from __future__ import annotations

__all__ = [
    "InvalidPayloadError",
    "decrypt_challenge",
    "encrypt_challenge",
    "generate_session_key",
    "parse_authentication_data",
]

import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from oidc_broker.exceptions import AuthDeniedError


class InvalidPayloadError(AuthDeniedError):
    """Authentication payload is malformed or not encrypted with the session key."""

    reason = "invalid_payload"


def generate_session_key() -> str:
    """Generate a new per-session key (URL-safe base64 string)."""
    return Fernet.generate_key().decode("ascii")


def encrypt_challenge(key: str, secret: str) -> str:
    """Encrypt a secret with a session key.

    This is what the client side does; the broker uses it in tests and tools.
    """
    return Fernet(key.encode("ascii")).encrypt(secret.encode("utf-8")).decode("ascii")


def decrypt_challenge(key: str, challenge: str) -> str:
    """Decrypt a challenge with the session key.

    Raises:
        InvalidPayloadError: If the challenge was not produced with this key.
    """
    try:
        return Fernet(key.encode("ascii")).decrypt(challenge.encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError, ValueError) as e:
        raise InvalidPayloadError("Challenge could not be decrypted with the session key") from e


def parse_authentication_data(raw: str) -> dict[str, Any]:
    """Parse the JSON object sent to IsAuthenticated.

    An empty string is an empty payload (device modes send nothing).

    Raises:
        InvalidPayloadError: If the payload is not a JSON object.
    """
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidPayloadError(f"Authentication data is not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise InvalidPayloadError("Authentication data must be a JSON object")
    return data
