"""Telemetry for oidc-broker (operational logging)."""
