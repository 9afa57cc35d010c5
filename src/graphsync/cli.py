"""graphsync command line.

Usage:
    graphsync handle decode ID                      # Show what a credential handle encodes
    graphsync handle migrate ID --kind password     # Upgrade a legacy handle
    graphsync lookup user --field user_principal_name --value alice@contoso.com
    graphsync get application OBJECT_ID             # Fetch one object as JSON

Commands that talk to the directory read their configuration from the
environment (see Config.from_env).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from .config import Config, ConfigurationError
from .context import open_context
from .errors import DirectoryError, HandleError
from .identity import decode_current, is_current, is_legacy, migrate
from .main import setup_logging
from .models import CredentialKind, ResourceKind
from .reconciler import LOOKUP_ATTRIBUTES, ReconcileOutcome
from .security import SecretlessViolationError

# Exit codes
EXIT_FAILURE = 1
EXIT_SECURITY_VIOLATION = 2

KIND_CHOICE = click.Choice([k.value for k in ResourceKind])


def _load_config() -> Config:
    try:
        return Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except SecretlessViolationError as e:
        click.secho(f"Security violation: {e}", fg="red", err=True)
        sys.exit(EXIT_SECURITY_VIOLATION)
    except DirectoryError as e:
        raise click.ClickException(str(e)) from e


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _echo_outcome(outcome: ReconcileOutcome) -> None:
    if not outcome.success:
        for diagnostic in outcome.diagnostics:
            click.secho(f"Error: {diagnostic.summary}", fg="red", err=True)
            if diagnostic.detail:
                click.echo(f"  {diagnostic.detail}", err=True)
        sys.exit(EXIT_FAILURE)
    _echo_json({"id": outcome.handle, **outcome.fields})


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="graphsync")
@click.option("--verbose", "-v", is_flag=True, help="Log at debug level.")
def cli(verbose: bool) -> None:
    """Directory object reconciliation client.

    \b
    Quick Start:
        graphsync handle decode p1/password/k1
        graphsync get user 00000000-0000-0000-0000-000000000000
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)


# =============================================================================
# Handle Commands
# =============================================================================


@cli.group()
def handle() -> None:
    """Inspect and upgrade credential handles (offline)."""
    pass


@handle.command("decode")
@click.argument("handle_id")
def handle_decode(handle_id: str) -> None:
    """Decode a current-shape credential handle."""
    try:
        credential_id = decode_current(handle_id)
    except HandleError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(
        {
            "parent_id": credential_id.parent_id,
            "kind": credential_id.kind.value,
            "key_id": credential_id.key_id,
        }
    )


@handle.command("migrate")
@click.argument("handle_id")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in CredentialKind]),
    required=True,
    help="Credential kind of the resource owning the handle.",
)
def handle_migrate(handle_id: str, kind: str) -> None:
    """Upgrade a legacy {parent}/{key} handle to {parent}/{kind}/{key}."""
    if not is_current(handle_id) and not is_legacy(handle_id):
        raise click.ClickException(f"{handle_id!r} is not a credential handle")
    try:
        click.echo(migrate(handle_id, kind))
    except HandleError as e:
        raise click.ClickException(str(e)) from e


# =============================================================================
# Directory Commands
# =============================================================================


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.option("--field", "field_name", required=True, help="Lookup attribute, e.g. display_name.")
@click.option("--value", required=True, help="Exact value to match.")
def lookup(kind: str, field_name: str, value: str) -> None:
    """Find exactly one object by a lookup attribute."""
    resource_kind = ResourceKind(kind)
    valid = [attribute for attribute, _ in LOOKUP_ATTRIBUTES[resource_kind]]
    if field_name not in valid:
        raise click.BadParameter(f"must be one of {valid}", param_hint="--field")

    config = _load_config()

    async def _lookup() -> ReconcileOutcome:
        async with open_context(config) as ctx:
            return await ctx.objects(resource_kind).lookup({field_name: value})

    _echo_outcome(_run(_lookup()))


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("object_id")
def get(kind: str, object_id: str) -> None:
    """Fetch one object by object ID."""
    resource_kind = ResourceKind(kind)
    config = _load_config()

    async def _get() -> ReconcileOutcome:
        async with open_context(config) as ctx:
            return await ctx.objects(resource_kind).read(object_id)

    outcome = _run(_get())
    if outcome.success and not outcome.tracked:
        raise click.ClickException(f"{kind} with object ID {object_id!r} was not found")
    _echo_outcome(outcome)
