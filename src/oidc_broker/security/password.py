"""Local password hashing and policy.

The local password protects the cached token for offline logins. It is
stored as a salted PBKDF2-SHA256 hash in the cache record:

    pbkdf2_sha256$<iterations>$<salt b64>$<hash b64>
"""

from __future__ import annotations

__all__ = [
    "hash_password",
    "validate_new_password",
    "verify_password",
]

import base64
import hashlib
import hmac
import secrets

from oidc_broker.constants import PASSWORD_HASH_ITERATIONS, PASSWORD_MIN_LENGTH
from oidc_broker.exceptions import NewPasswordValidationError

_ALGORITHM = "pbkdf2_sha256"
_SALT_BYTES = 16


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def hash_password(password: str, iterations: int | None = None) -> str:
    """Hash a local password with a fresh random salt.

    Args:
        password: Plaintext password.
        iterations: PBKDF2 iterations (default PASSWORD_HASH_ITERATIONS).

    Returns:
        Encoded hash string.
    """
    rounds = iterations or PASSWORD_HASH_ITERATIONS
    salt = secrets.token_bytes(_SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return f"{_ALGORITHM}${rounds}${_b64(salt)}${_b64(digest)}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a plaintext password against an encoded hash.

    Malformed hashes never verify.
    """
    try:
        algorithm, rounds, salt, expected = encoded.split("$")
        if algorithm != _ALGORITHM:
            return False
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), _unb64(salt), int(rounds))
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(digest, _unb64(expected))


def validate_new_password(password: str, username: str) -> None:
    """Enforce the local password policy.

    Raises:
        NewPasswordValidationError: If the password is too short, equals the
            username, or repeats a single character.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise NewPasswordValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if password.casefold() == username.casefold():
        raise NewPasswordValidationError("Password must not be the same as the username")
    if len(set(password)) == 1:
        raise NewPasswordValidationError("Password must not repeat a single character")
