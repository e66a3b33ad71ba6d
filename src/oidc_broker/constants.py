"""Application-wide constants for oidc-broker.

Constants that define broker behavior.
For per-deployment settings, see config.py.
"""

import os

__all__ = [
    # Application identity
    "APP_NAME",
    # Default locations
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_CACHE_DIR",
    "DEFAULT_HOME_BASE_DIR",
    "DEFAULT_SHELL",
    # Provider HTTP
    "OAUTH_CLIENT_TIMEOUT_SECONDS",
    "PROVIDER_PROBE_TIMEOUT_SECONDS",
    "DEFAULT_SCOPES",
    # OAuth device flow
    "DEVICE_FLOW_POLL_INTERVAL_SECONDS",
    "DEVICE_FLOW_TIMEOUT_SECONDS",
    "DEVICE_FLOW_SLOW_DOWN_SECONDS",
    "DEVICE_FLOW_MAX_TRANSPORT_ERRORS",
    # Session handling
    "IS_AUTHENTICATED_WAIT_SECONDS",
    "SESSION_ID_BYTES",
    # Local password
    "PASSWORD_HASH_ITERATIONS",
    "PASSWORD_MIN_LENGTH",
    # Token cache
    "CACHE_FILE_SUFFIX",
]

from platformdirs import site_config_dir, site_data_dir

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for logger names, directory names, key derivation.
APP_NAME: str = "oidc-broker"

# ============================================================================
# Default Locations
# ============================================================================

# The broker runs as a system service, so defaults are site-wide directories.
# Linux: /etc/xdg/oidc-broker/broker.conf and /usr/local/share/oidc-broker/cache
DEFAULT_CONFIG_PATH: str = os.path.join(site_config_dir(APP_NAME), "broker.conf")
DEFAULT_CACHE_DIR: str = os.path.join(site_data_dir(APP_NAME), "cache")

# Home directory base reported in user info when config does not set one
DEFAULT_HOME_BASE_DIR: str = "/home"

# Login shell reported in user info
DEFAULT_SHELL: str = "/usr/bin/bash"

# ============================================================================
# Provider HTTP
# ============================================================================

# Timeout for token endpoint and device authorization requests (seconds)
OAUTH_CLIENT_TIMEOUT_SECONDS: float = 30.0

# Timeout for the discovery probe deciding whether the provider is reachable.
# Kept short: it runs on every GetAuthenticationModes call.
PROVIDER_PROBE_TIMEOUT_SECONDS: float = 5.0

# Scopes requested from every provider; provider variants may add more
DEFAULT_SCOPES: tuple[str, ...] = ("openid", "profile", "email", "offline_access")

# ============================================================================
# OAuth Device Flow (RFC 8628)
# ============================================================================

# Poll interval when the provider does not send one
DEVICE_FLOW_POLL_INTERVAL_SECONDS: int = 5

# Upper bound on a device flow, even if the provider advertises longer
DEVICE_FLOW_TIMEOUT_SECONDS: int = 900

# Added to the interval on a slow_down response (RFC 8628 section 3.5)
DEVICE_FLOW_SLOW_DOWN_SECONDS: int = 5

# Consecutive transport errors tolerated while polling before giving up
DEVICE_FLOW_MAX_TRANSPORT_ERRORS: int = 3

# ============================================================================
# Session Handling
# ============================================================================

# How long one IsAuthenticated call waits on a device flow before
# returning "authenticating" so the caller can call again.
IS_AUTHENTICATED_WAIT_SECONDS: float = 30.0

# Session ID entropy (256 bits via secrets.token_urlsafe)
SESSION_ID_BYTES: int = 32

# ============================================================================
# Local Password
# ============================================================================

# PBKDF2-SHA256 iterations for local password hashes
PASSWORD_HASH_ITERATIONS: int = 600_000

# Minimum length of a new local password
PASSWORD_MIN_LENGTH: int = 8

# ============================================================================
# Token Cache
# ============================================================================

CACHE_FILE_SUFFIX: str = ".cache"
