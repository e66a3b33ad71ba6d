"""Shared utilities for oidc-broker."""
