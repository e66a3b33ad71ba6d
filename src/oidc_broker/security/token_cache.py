"""Durable per-user token cache.

Stores the latest token set obtained for each user so they can log in
while the identity provider is unreachable.

Storage:
- One Fernet-encrypted JSON file per user in the cache directory
- Key derived from machine-specific identifiers (PBKDF2), or given explicitly
- Writes go to a temp file in the same directory and are moved into place
  with os.replace, so readers see either the old or the new record
- One lock per username serializes writers

Tokens are never stored in plaintext.
"""

from __future__ import annotations

__all__ = [
    "CachedToken",
    "TokenCache",
    "derive_machine_key",
]

import base64
import hashlib
import os
import platform
import socket
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, ConfigDict, Field

from oidc_broker.constants import APP_NAME, CACHE_FILE_SUFFIX
from oidc_broker.exceptions import CacheReadError, CacheWriteError, TokenNotFoundError


class CachedToken(BaseModel):
    """Token set cached for one user.

    Unknown fields are ignored on load, so newer brokers can add fields
    without migrating existing records.

    Attributes:
        access_token: OAuth access token.
        refresh_token: Token for obtaining new access tokens.
        id_token: OIDC ID token (JWT) containing user claims.
        expires_at: UTC timestamp when access_token expires.
        issued_at: UTC timestamp when tokens were issued.
        password_hash: Hash of the local password guarding offline logins.
        claims: Validated ID token claims, used for offline user info.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    expires_at: datetime
    issued_at: datetime
    password_hash: str | None = None
    claims: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_expired(self) -> bool:
        """Check if access token has expired."""
        return datetime.now(timezone.utc) >= self.expires_at

    @property
    def seconds_until_expiry(self) -> float:
        """Seconds until access token expires (negative if expired)."""
        delta = self.expires_at - datetime.now(timezone.utc)
        return delta.total_seconds()

    def to_json(self) -> str:
        """Serialize to JSON string for storage."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "CachedToken":
        """Deserialize from JSON string."""
        return cls.model_validate_json(data)


def _get_machine_id() -> str:
    """Get a stable machine identifier.

    Returns:
        /etc/machine-id (or the dbus copy) on Linux, hostname elsewhere.
    """
    if platform.system() == "Linux":
        for path in ("/etc/machine-id", "/var/lib/dbus/machine-id"):
            try:
                with open(path) as f:
                    machine_id = f.read().strip()
                if machine_id:
                    return machine_id
            except OSError:
                continue
    return socket.gethostname()


def derive_machine_key() -> bytes:
    """Derive the cache encryption key from machine-specific data.

    Uses PBKDF2 with machine ID and hostname as input. The salt is static
    per application so the key is stable across restarts.

    Returns:
        URL-safe base64 encoded 32-byte key suitable for Fernet.
    """
    combined = f"{_get_machine_id()}:{socket.gethostname()}:{APP_NAME}-token-cache"
    salt = f"{APP_NAME}-v1".encode()
    key = hashlib.pbkdf2_hmac("sha256", combined.encode(), salt, iterations=100_000, dklen=32)
    return base64.urlsafe_b64encode(key)


class TokenCache:
    """Encrypted per-user token records with atomic replace.

    Usage:
        cache = TokenCache(Path("/var/lib/oidc-broker/cache"))
        cache.store("alice", token)
        token = cache.load("alice")
    """

    def __init__(self, cache_dir: Path, key: bytes | None = None) -> None:
        """Initialize token cache.

        Args:
            cache_dir: Directory holding the records (created on first write).
            key: Fernet key. Derived from machine identifiers when omitted.
        """
        self._cache_dir = Path(cache_dir)
        self._key = key
        self._fernet: Fernet | None = None
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._key or derive_machine_key())
        return self._fernet

    def _lock_for(self, username: str) -> threading.Lock:
        key = username.lower()
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def path_for(self, username: str) -> Path:
        """Return the record path for a user.

        Usernames are case-insensitive and encoded so they cannot escape
        the cache directory.
        """
        encoded = base64.urlsafe_b64encode(username.lower().encode("utf-8")).decode("ascii").rstrip("=")
        return self._cache_dir / f"{encoded}{CACHE_FILE_SUFFIX}"

    def exists(self, username: str) -> bool:
        """Check if a record exists for the user."""
        return self.path_for(username).is_file()

    def load(self, username: str) -> CachedToken:
        """Load the cached token for a user.

        Raises:
            TokenNotFoundError: If no record exists.
            CacheReadError: If the record cannot be read, decrypted or parsed.
        """
        path = self.path_for(username)
        try:
            encrypted = path.read_bytes()
        except FileNotFoundError as e:
            raise TokenNotFoundError(f"No cached token for {username}") from e
        except OSError as e:
            raise CacheReadError(f"Failed to read cached token for {username}: {e}") from e

        try:
            decrypted = self._get_fernet().decrypt(encrypted)
        except InvalidToken as e:
            raise CacheReadError(
                f"Failed to decrypt cached token for {username} (corrupted or key changed)"
            ) from e

        try:
            return CachedToken.from_json(decrypted)
        except ValueError as e:
            raise CacheReadError(f"Failed to parse cached token for {username}: {e}") from e

    def store(self, username: str, token: CachedToken) -> None:
        """Atomically replace the cached token for a user.

        Raises:
            CacheWriteError: If the record cannot be written. The previous
                record, if any, is left untouched.
        """
        path = self.path_for(username)
        with self._lock_for(username):
            tmp_name: str | None = None
            try:
                encrypted = self._get_fernet().encrypt(token.to_json().encode("utf-8"))

                self._cache_dir.mkdir(parents=True, exist_ok=True)
                self._cache_dir.chmod(0o700)

                fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=self._cache_dir)
                with os.fdopen(fd, "wb") as f:
                    f.write(encrypted)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
                tmp_name = None
            except OSError as e:
                raise CacheWriteError(f"Failed to write cached token for {username}: {e}") from e
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass

    def delete(self, username: str) -> bool:
        """Delete a user's record.

        Returns:
            True if a record was removed, False if none existed.

        Raises:
            CacheWriteError: If the file exists but cannot be removed.
        """
        with self._lock_for(username):
            try:
                self.path_for(username).unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise CacheWriteError(f"Failed to delete cached token for {username}: {e}") from e
            return True

    def usernames(self) -> list[str]:
        """List users with a cached record (lower-cased, sorted)."""
        if not self._cache_dir.is_dir():
            return []
        names = []
        for path in self._cache_dir.glob(f"*{CACHE_FILE_SUFFIX}"):
            encoded = path.name[: -len(CACHE_FILE_SUFFIX)]
            try:
                names.append(base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8"))
            except (ValueError, UnicodeDecodeError):
                continue  # Not one of ours
        return sorted(names)
