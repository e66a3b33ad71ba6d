"""Token cache commands.

Commands:
    cache list   - Users with a cached token
    cache show   - Details of one record (never the tokens themselves)
    cache remove - Delete a user's record
"""

from __future__ import annotations

__all__ = ["cache"]

from pathlib import Path

import click

from oidc_broker.constants import DEFAULT_CACHE_DIR
from oidc_broker.exceptions import BrokerError
from oidc_broker.providers.group import groups_from_claims
from oidc_broker.security.token_cache import TokenCache

from ..styling import style_dim, style_label, style_success

cache_dir_option = click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_CACHE_DIR,
    show_default=True,
    help="Token cache directory",
)


@click.group()
def cache() -> None:
    """Token cache inspection."""
    pass


@cache.command("list")
@cache_dir_option
def list_cmd(cache_dir: Path) -> None:
    """List users with a cached token."""
    names = TokenCache(cache_dir).usernames()
    if not names:
        click.echo(style_dim("No cached tokens."))
        return
    click.echo(style_label("Cached users") + f" {len(names)}")
    for name in names:
        click.echo(f"  {name}")


@cache.command()
@click.argument("username")
@cache_dir_option
def show(username: str, cache_dir: Path) -> None:
    """Show a user's cached record."""
    try:
        token = TokenCache(cache_dir).load(username)
    except BrokerError as e:
        raise click.ClickException(str(e)) from e

    expiry = token.expires_at.isoformat()
    if token.is_expired:
        expiry += " (expired)"
    click.echo(f"{style_label('User')} {username.lower()}")
    click.echo(f"{style_label('Issued')} {token.issued_at.isoformat()}")
    click.echo(f"{style_label('Expires')} {expiry}")
    click.echo(f"{style_label('Refresh token')} {'yes' if token.refresh_token else 'no'}")
    click.echo(f"{style_label('Local password')} {'set' if token.password_hash else 'not set'}")
    click.echo(f"{style_label('Subject')} {token.claims.get('sub', '-')}")

    groups = groups_from_claims(token.claims)
    if groups:
        click.echo(style_label("Groups"))
        for group in groups:
            click.echo(f"  {group.name}" + (f" ({group.ugid})" if group.ugid else ""))
    else:
        click.echo(f"{style_label('Groups')} {style_dim('none in cached claims')}")


@cache.command()
@click.argument("username")
@cache_dir_option
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def remove(username: str, cache_dir: Path, yes: bool) -> None:
    """Remove a user's cached record.

    The user needs the identity provider for the next login.
    """
    token_cache = TokenCache(cache_dir)
    if not token_cache.exists(username):
        raise click.ClickException(f"No cached token for {username}")
    if not yes:
        click.confirm(f"Remove cached token for {username}?", abort=True)
    try:
        token_cache.delete(username)
    except BrokerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(style_success(f"Removed cached token for {username}"))
