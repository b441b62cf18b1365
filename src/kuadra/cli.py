"""kuadra CLI.

Usage:
    kuadra run                               # Run the operator
    kuadra reconcile NAMESPACE NAME          # One reconcile cycle for an AwsAccount
    kuadra apply -f user.yaml                # Create or update User/AwsAccount records
    kuadra diff-groups --desired a,b --current b,c
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from .config import Config, ConfigurationError
from .errors import AlreadyExistsError, ConflictError, NotFoundError
from .groups import apply_diff, diff_groups
from .interfaces import ObjectStore
from .kube import KubernetesObjectStore, load_kube_config
from .logging_setup import setup_logging
from .main import build_account_reconciler
from .main import run as run_operator
from .manifests import ManifestLoadError, load_manifests
from .models import AwsAccount, ObjectKey, User

APPLY_CREATED = "created"
APPLY_CONFIGURED = "configured"


def split_groups(value: str | None) -> list[str]:
    """Parse a comma-separated group list, ignoring blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def load_config() -> Config:
    try:
        return Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def apply_record(store: ObjectStore, record: AwsAccount | User) -> str:
    """Create ``record``, or replace the spec of the stored one.

    Status is preserved on update; it belongs to the reconciler.

    Returns:
        ``"created"`` or ``"configured"``.
    """
    if isinstance(record, AwsAccount):
        try:
            existing = store.get_aws_account(record.key)
        except NotFoundError:
            store.create_aws_account(record)
            return APPLY_CREATED
        record.metadata.resource_version = existing.metadata.resource_version
        record.status = existing.status
        store.update_aws_account(record)
        return APPLY_CONFIGURED

    try:
        existing_user = store.get_user(record.key)
    except NotFoundError:
        store.create_user(record)
        return APPLY_CREATED
    record.metadata.resource_version = existing_user.metadata.resource_version
    store.update_user(record)
    return APPLY_CONFIGURED


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="kuadra")
def cli() -> None:
    """kuadra: IAM accounts for cluster users.

    \b
    Quick Start:
        kuadra apply -f user.yaml   # Declare a user
        kuadra run                  # Run the operator
    """
    pass


@cli.command()
def run() -> None:
    """Run the operator until SIGTERM or SIGINT."""
    run_operator()


@cli.command()
@click.argument("namespace")
@click.argument("name")
def reconcile(namespace: str, name: str) -> None:
    """Run one reconcile cycle for AwsAccount NAMESPACE/NAME and print the result."""
    config = load_config()
    setup_logging(config.log_level_value, json_output=False)
    load_kube_config(config.in_cluster)

    reconciler = build_account_reconciler(config)
    result = asyncio.run(reconciler.reconcile(ObjectKey(namespace=namespace, name=name)))

    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        raise SystemExit(1)


@cli.command()
@click.option(
    "--filename",
    "-f",
    "filename",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file with User and/or AwsAccount documents",
)
def apply(filename: Path) -> None:
    """Create or update the records in a manifest file."""
    try:
        records = load_manifests(filename)
    except ManifestLoadError as e:
        raise click.ClickException(str(e)) from e

    config = load_config()
    setup_logging(config.log_level_value, json_output=False)
    load_kube_config(config.in_cluster)
    store = KubernetesObjectStore()

    for record in records:
        try:
            outcome = apply_record(store, record)
        except (AlreadyExistsError, ConflictError) as e:
            raise click.ClickException(f"{record.kind.lower()}/{record.metadata.name}: {e}") from e
        click.echo(f"{record.kind.lower()}/{record.metadata.name} {outcome}")


@cli.command("diff-groups")
@click.option("--desired", default="", help="Comma-separated desired groups")
@click.option("--current", default="", help="Comma-separated current groups")
def diff_groups_command(desired: str, current: str) -> None:
    """Show the membership changes between two group lists."""
    current_groups = split_groups(current)
    diff = diff_groups(split_groups(desired), current_groups)
    click.echo(
        json.dumps(
            {
                "to_add": diff.to_add,
                "to_remove": diff.to_remove,
                "result": apply_diff(current_groups, diff),
            },
            indent=2,
        )
    )


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
