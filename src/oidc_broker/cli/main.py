"""Main CLI entry point for oidc-broker.

Defines the CLI group and registers all subcommands.

Commands:
    check - Check the configuration against the identity provider
    cache - Token cache inspection (list, show, remove)

Subcommand help:
    oidc-broker COMMAND -h     Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli"]

import logging
import sys
from pathlib import Path

import click

from oidc_broker import __version__
from oidc_broker.telemetry.system import configure_system_logger_file, set_system_log_level

from .commands.cache import cache
from .commands.check import check


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write warnings and errors to this JSONL file",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, debug: bool, log_file: Path | None) -> None:
    """oidc-broker: OIDC authentication broker for local logins."""
    if version:
        click.echo(f"oidc-broker {__version__}")
        sys.exit(0)
    if debug:
        set_system_log_level(logging.DEBUG)
    if log_file is not None:
        configure_system_logger_file(log_file)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(cache)
cli.add_command(check)


def main() -> None:
    """CLI entry point."""
    cli()
