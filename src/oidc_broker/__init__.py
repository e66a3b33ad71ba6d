"""oidc-broker: OpenID Connect authentication broker for system logins."""

__version__ = "0.1.0"
