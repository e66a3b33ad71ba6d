"""Command-line interface for oidc-broker.

Provides commands for checking the broker configuration against the
identity provider and for inspecting the token cache.
"""

from .main import cli, main

__all__ = ["cli", "main"]
