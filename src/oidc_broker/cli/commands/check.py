"""Configuration check command.

Loads the broker configuration, probes the identity provider and shows
which modes a fresh login session would be offered.
"""

from __future__ import annotations

__all__ = ["check"]

import asyncio
import sys
from pathlib import Path

import click
import httpx

from oidc_broker.broker.authmodes import MODE_LAYOUTS, filter_by_ui_layouts
from oidc_broker.broker.decider import SessionPurpose, decide_auth_modes
from oidc_broker.config import BrokerConfig, load_broker_config
from oidc_broker.constants import DEFAULT_CONFIG_PATH, OAUTH_CLIENT_TIMEOUT_SECONDS
from oidc_broker.exceptions import ConfigurationError
from oidc_broker.providers import provider_for_config
from oidc_broker.security.auth.discovery import ProviderMetadata, probe_provider

from ..styling import style_dim, style_error, style_header, style_label, style_success


async def _probe(config: BrokerConfig) -> ProviderMetadata | None:
    async with httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS) as client:
        return await probe_provider(client, config.issuer)


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Broker configuration file",
)
def check(config_path: Path) -> None:
    """Check configuration and provider reachability."""
    try:
        config = load_broker_config(config_path)
    except ConfigurationError as e:
        click.echo(style_error(str(e)), err=True)
        sys.exit(e.exit_code)

    provider = provider_for_config(config)

    click.echo(style_header("Configuration"))
    click.echo(f"{style_label('Issuer')} {config.issuer}")
    click.echo(f"{style_label('Client ID')} {config.client_id}")
    click.echo(f"{style_label('Provider')} {provider.name}")
    click.echo(f"{style_label('Home base')} {config.home_base_dir}")
    click.echo()

    metadata = asyncio.run(_probe(config))

    click.echo(style_header("Identity provider"))
    if metadata is None:
        click.echo(style_error("Unreachable"))
    else:
        click.echo(style_success("Reachable"))
        endpoints = sorted(endpoint.value for endpoint in metadata.endpoints)
        click.echo(f"{style_label('Endpoints')} {', '.join(endpoints) or 'none'}")
    click.echo()

    # A fresh login session for a user without cached token
    modes = decide_auth_modes(
        SessionPurpose.LOGIN,
        token_exists=False,
        provider_reachable=metadata is not None,
        supported_endpoints=metadata.endpoints if metadata is not None else frozenset(),
        step=0,
        qr_enabled=config.qr_code,
    )
    offers = filter_by_ui_layouts(modes, set(MODE_LAYOUTS.values()))

    click.echo(style_header("Login modes"))
    if not offers:
        click.echo(style_dim("None (users need a cached credential)."))
    for offer in offers:
        click.echo(f"  {offer.id:<16} {offer.label}")
