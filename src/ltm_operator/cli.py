"""LTM Operator CLI (ltmo).

Usage:
    ltmo plan specs/ltm.yaml          # Show what a pass would change
    ltmo apply specs/ltm.yaml         # Apply the declared state once
    ltmo delete-node web01            # Delete a node, clearing pool references
    ltmo show-pool web                # Print a pool's attributes and members
    ltmo run                          # Run the reconciliation loop

Connection settings are read from the environment (see Config.from_env).
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from .client import BigIPClient, StateStore, StoreError
from .config import Config, ConfigurationError
from .models import LtmSpec
from .node_deletion import NodeDeletionError
from .reconciler import Reconciler, ReconcileResult
from .spec_loader import SpecLoadError, load_spec


def _load_config(ctx: click.Context) -> Config:
    config = ctx.obj.get("config")
    if config is None:
        try:
            config = Config.from_env()
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        ctx.obj["config"] = config
    return config


@contextmanager
def _store(ctx: click.Context) -> Iterator[StateStore]:
    """Yield the injected store, or a client connected from the environment."""
    store = ctx.obj.get("store")
    if store is not None:
        yield store
        return

    with BigIPClient.from_config(_load_config(ctx)) as client:
        yield client


def _load_spec(spec_file: Path) -> LtmSpec:
    try:
        return load_spec(spec_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e


def _print_result(result: ReconcileResult) -> None:
    for action in result.actions:
        line = f"  {action.action.value:<14} {action.resource}"
        if action.detail:
            line += f"  ({action.detail})"
        click.echo(line)

    if not result.actions:
        click.echo("  no changes")

    if result.error is not None:
        raise click.ClickException(f"Reconciliation failed: {result.error}")


@click.group()
@click.version_option(version="0.1.0", prog_name="ltmo")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """LTM Operator - declarative BIG-IP node and pool management."""
    ctx.ensure_object(dict)


@cli.command()
@click.argument("spec_file", type=click.Path(path_type=Path))
@click.pass_context
def plan(ctx: click.Context, spec_file: Path) -> None:
    """Show the changes a reconciliation pass would make."""
    config = _load_config(ctx)
    spec = _load_spec(spec_file)

    with _store(ctx) as store:
        result = Reconciler(store, config).reconcile_once(spec, dry_run=True)

    click.echo(f"Plan for {spec_file}:")
    _print_result(result)


@cli.command()
@click.argument("spec_file", type=click.Path(path_type=Path))
@click.option("--dry-run", is_flag=True, help="Only report planned changes")
@click.pass_context
def apply(ctx: click.Context, spec_file: Path, dry_run: bool) -> None:
    """Apply the declared state once."""
    config = _load_config(ctx)
    spec = _load_spec(spec_file)

    with _store(ctx) as store:
        result = Reconciler(store, config).reconcile_once(spec, dry_run=dry_run or config.dry_run)

    click.echo(f"Applied {spec_file}:" if not result.dry_run else f"Dry run for {spec_file}:")
    _print_result(result)


@cli.command("delete-node")
@click.argument("name")
@click.option("--partition", default=None, help="Node partition (default: DEFAULT_PARTITION)")
@click.pass_context
def delete_node(ctx: click.Context, name: str, partition: str | None) -> None:
    """Delete a node, removing pool memberships that reference it."""
    config = _load_config(ctx)

    with _store(ctx) as store:
        reconciler = Reconciler(store, config)
        try:
            report = reconciler.nodes.delete(name, partition)
        except (StoreError, NodeDeletionError) as e:
            raise click.ClickException(str(e)) from e

    click.echo(f"Deleted node /{report.partition}/{report.name} after {report.attempts} attempt(s)")
    for pool_name, member in report.removed_members:
        click.echo(f"  removed {member} from pool {pool_name}")


@cli.command("show-pool")
@click.argument("name")
@click.option("--partition", default=None, help="Pool partition (default: DEFAULT_PARTITION)")
@click.pass_context
def show_pool(ctx: click.Context, name: str, partition: str | None) -> None:
    """Print a pool's attributes and members."""
    config = _load_config(ctx)

    with _store(ctx) as store:
        try:
            state = Reconciler(store, config).pools.read(name, partition)
        except StoreError as e:
            raise click.ClickException(str(e)) from e

    if state is None:
        raise click.ClickException(f"Pool {name} not found")

    attributes = state.attributes
    click.echo(f"Pool /{state.partition}/{state.name}")
    click.echo(f"  load balancing: {attributes.load_balancing_mode}")
    click.echo(f"  allow NAT:      {'yes' if attributes.allow_nat else 'no'}")
    click.echo(f"  allow SNAT:     {'yes' if attributes.allow_snat else 'no'}")
    click.echo(f"  monitors:       {attributes.monitor_expression() or '-'}")
    click.echo("  members:")
    for member in sorted(state.members):
        click.echo(f"    {member}")


@cli.command()
def run() -> None:
    """Run the reconciliation loop (same as the ltm-operator process)."""
    from .main import main

    sys.exit(main())


if __name__ == "__main__":
    cli()
