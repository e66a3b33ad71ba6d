"""Broker configuration for oidc-broker.

The broker reads an INI file with an [authd] section (bus registration,
consumed by the transport) and an [oidc] section (provider settings).
The cache path is not part of the file; the service passes it in.

Example file:
    [authd]
    dbus_name = com.ubuntu.authd.OidcBroker
    dbus_object = /com/ubuntu/authd/OidcBroker

    [oidc]
    issuer = https://login.example.com
    client_id = my-client-id
    home_base_dir = /home

Example usage:
    config = load_broker_config(Path("/etc/oidc-broker/broker.conf"), cache_path=cache_dir)
"""

from __future__ import annotations

__all__ = [
    "AUTHD_SECTION",
    "OIDC_SECTION",
    "BrokerConfig",
    "load_broker_config",
]

import configparser
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from oidc_broker.constants import DEFAULT_CACHE_DIR, DEFAULT_HOME_BASE_DIR
from oidc_broker.exceptions import ConfigurationError

AUTHD_SECTION = "authd"
OIDC_SECTION = "oidc"


class BrokerConfig(BaseModel):
    """OIDC broker configuration.

    Attributes:
        issuer: OIDC issuer URL (e.g., "https://login.microsoftonline.com/<tenant>/v2.0").
        client_id: OAuth client ID registered for the broker.
        home_base_dir: Base directory for home directories in user info.
        cache_path: Directory holding one encrypted token record per user.
        provider: Provider variant name ("generic", "msentraid").
            None means infer from the issuer.
        qr_code: Whether device login may be offered with QR rendering.
        dbus_name: Bus name for the transport (not used by the core).
        dbus_object: Object path for the transport (not used by the core).
    """

    model_config = ConfigDict(extra="ignore")

    issuer: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    home_base_dir: str = DEFAULT_HOME_BASE_DIR
    cache_path: Path = Path(DEFAULT_CACHE_DIR)
    provider: str | None = None
    qr_code: bool = True
    dbus_name: str | None = None
    dbus_object: str | None = None

    @field_validator("issuer")
    @classmethod
    def _issuer_is_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"issuer must be an http(s) URL, got {value!r}")
        return value

    @field_validator("provider")
    @classmethod
    def _provider_known(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        # Local import: providers import config for type hints
        from oidc_broker.providers import PROVIDERS

        if value not in PROVIDERS:
            raise ValueError(f"unknown provider {value!r} (expected one of {', '.join(sorted(PROVIDERS))})")
        return value


def load_broker_config(config_path: Path, cache_path: Path | None = None) -> BrokerConfig:
    """Load and validate the broker configuration file.

    Args:
        config_path: Path to the INI configuration file.
        cache_path: Token cache directory. Defaults to DEFAULT_CACHE_DIR.

    Returns:
        Validated BrokerConfig.

    Raises:
        ConfigurationError: If the file is missing, unreadable, lacks the
            [oidc] section, or holds invalid values.
    """
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(interpolation=None)
    try:
        with config_path.open(encoding="utf-8") as f:
            parser.read_file(f)
    except (OSError, configparser.Error) as e:
        raise ConfigurationError(f"Cannot parse configuration file {config_path}: {e}") from e

    if not parser.has_section(OIDC_SECTION):
        raise ConfigurationError(f"Configuration file {config_path} has no [{OIDC_SECTION}] section")

    values: dict[str, object] = dict(parser.items(OIDC_SECTION))
    if parser.has_section(AUTHD_SECTION):
        authd = parser[AUTHD_SECTION]
        values["dbus_name"] = authd.get("dbus_name")
        values["dbus_object"] = authd.get("dbus_object")
    if cache_path is not None:
        values["cache_path"] = cache_path

    try:
        return BrokerConfig.model_validate(values)
    except ValidationError as e:
        errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ConfigurationError(f"Invalid configuration in {config_path}: {errors}") from e
