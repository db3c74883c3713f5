"""Command-line interface for obtaining and managing cached tokens."""

from __future__ import annotations

import logging
import sys
from datetime import datetime

import click

from aadauth.api import (
    clean_token_directory,
    delete_azure_token,
    get_azure_token,
    list_azure_tokens,
)
from aadauth.cache import TokenCache
from aadauth.models.errors import AuthError
from aadauth.models.flow import AuthType
from aadauth.models.settings import DEFAULT_AAD_HOST, get_settings

logger = logging.getLogger(__name__)


def _fail(exc: Exception) -> None:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Obtain Azure Active Directory tokens and manage the token cache."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cache = TokenCache(get_settings().data_dir)
    cache.ensure_directory()

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["cache"] = cache


@cli.command()
@click.argument("resource", nargs=-1, required=True)
@click.option("--tenant", "-t", required=True, help="Tenant name, domain or GUID")
@click.option("--app", "-a", required=True, help="Client (app) ID")
@click.option("--password", "-p", help="Client secret, or user password with --username")
@click.option("--username", "-u", help="User name, or login hint")
@click.option(
    "--certificate",
    type=click.Path(exists=True, dir_okay=False),
    help="PEM or PFX file holding the client certificate and key",
)
@click.option(
    "--auth-type",
    type=click.Choice([t.value for t in AuthType if t != AuthType.MANAGED]),
    help="Grant type; inferred from the credentials when omitted",
)
@click.option(
    "--version", "aad_version", type=click.Choice(["1", "2"]), default="1", show_default=True
)
@click.option("--aad-host", default=DEFAULT_AAD_HOST, show_default=True)
@click.option("--no-cache", is_flag=True, help="Neither load nor save the token")
@click.option("--show-token", is_flag=True, help="Print the access token instead of a summary")
@click.pass_context
def acquire(
    ctx: click.Context,
    resource: tuple[str, ...],
    tenant: str,
    app: str,
    password: str | None,
    username: str | None,
    certificate: str | None,
    auth_type: str | None,
    aad_version: str,
    aad_host: str,
    no_cache: bool,
    show_token: bool,
) -> None:
    """Obtain a token for RESOURCE (v1.0) or one or more scopes (v2.0)."""
    version = int(aad_version)
    if version == 1 and len(resource) != 1:
        _fail(click.UsageError("A v1.0 token needs exactly one resource"))

    try:
        token = get_azure_token(
            resource[0] if version == 1 else list(resource),
            tenant,
            app,
            password=password,
            username=username,
            certificate=certificate,
            auth_type=auth_type,
            aad_host=aad_host,
            version=version,
            use_cache=not no_cache,
            notify=lambda message: click.echo(message, err=True),
            cache=ctx.obj["cache"],
        )
    except AuthError as e:
        _fail(e)
        return

    if show_token:
        click.echo(token.credentials.access_token)
    else:
        click.echo(str(token), nl=False)


@cli.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List cached tokens."""
    snapshots = list_azure_tokens(ctx.obj["cache"])
    if not snapshots:
        click.echo("No cached tokens")
        return

    for fingerprint, snapshot in snapshots.items():
        target = snapshot.resource or " ".join(snapshot.scope or [])
        expires_on = snapshot.credentials.expires_on
        expiry = (
            datetime.fromtimestamp(expires_on).astimezone().isoformat(timespec="seconds")
            if expires_on is not None
            else "unknown"
        )
        click.echo(
            f"{fingerprint}  {snapshot.auth_type:<18}  {snapshot.tenant}  {target}  "
            f"(expires {expiry})"
        )


@cli.command()
@click.argument("token_hash")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, token_hash: str, yes: bool) -> None:
    """Delete the cached token with hash TOKEN_HASH."""
    if not yes:
        click.confirm(f"Do you really want to delete the token {token_hash}?", abort=True)

    try:
        deleted = delete_azure_token(hash=token_hash, cache=ctx.obj["cache"])
    except ValueError as e:
        _fail(e)
        return

    click.echo("Token deleted" if deleted else "No cached token with that hash")


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def clean(ctx: click.Context, yes: bool) -> None:
    """Delete every cached token."""
    cache: TokenCache = ctx.obj["cache"]
    if not yes:
        click.confirm(f"Do you really want to delete all tokens in {cache.directory}?", abort=True)

    removed = clean_token_directory(cache)
    click.echo(f"Deleted {removed} token(s)")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
