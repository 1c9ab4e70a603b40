#!/usr/bin/env python3
"""
kapply command line interface.

kubectl-like apply/prune/delete/status for an inventory-tracked resource set.
"""

import asyncio
from typing import List

import click

from config import Config
from errors import KapplyError
from main import Application, configure_logging
from reconciler import Operation, ReconcileResult
from status import ResourceStatus, format_status


def _run(config: Config, operation: Operation, path: str) -> ReconcileResult:
    async def run():
        async with Application(config) as app:
            return await app.run(operation, path)

    return asyncio.run(run())


def _status(config: Config, path: str) -> List[ResourceStatus]:
    async def run():
        async with Application(config) as app:
            return await app.status(path)

    return asyncio.run(run())


def _report(result: ReconcileResult) -> None:
    """Print a result and exit non-zero if it failed."""
    for label, references in (
        ("created", result.created),
        ("configured", result.updated),
        ("pruned", result.pruned),
        ("deleted", result.deleted),
    ):
        for reference in references:
            click.echo(f"{reference} {label}")

    if not result.success:
        click.echo(f"Error: {result.error_message}", err=True)
        for reference in result.failed_references:
            click.echo(f"  failed: {reference}", err=True)
        click.get_current_context().exit(1)

    click.echo(
        f"{result.operation.value}: {result.resources} resources "
        f"in {result.duration_seconds:.1f}s"
    )


@click.group()
@click.option("--server", help="Address of the cluster API server")
@click.option("--token", help="Bearer token for the cluster API")
@click.option(
    "--certificate-authority",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to a CA bundle for the cluster API",
)
@click.option(
    "--insecure-skip-tls-verify",
    is_flag=True,
    help="Do not verify the server certificate",
)
@click.option("--namespace", "-n", help="Namespace for namespaced objects without one")
@click.option("--timeout", type=float, help="Overall deadline in seconds")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level",
)
@click.pass_context
def cli(
    ctx,
    server,
    token,
    certificate_authority,
    insecure_skip_tls_verify,
    namespace,
    timeout,
    log_level,
):
    """kapply - apply, prune and delete inventory-tracked resource sets"""
    config = Config.from_env()

    # Flags take precedence over the environment
    if server:
        config.cluster.server = server
    if token:
        config.cluster.token = token
    if certificate_authority:
        config.cluster.certificate_authority = certificate_authority
    if insecure_skip_tls_verify:
        config.cluster.insecure_skip_tls_verify = True
    if namespace:
        config.cluster.namespace = namespace
    if timeout is not None:
        config.apply.operation_timeout = timeout
    if log_level:
        config.log_level = log_level

    configure_logging(config.log_level)
    ctx.obj = config


@cli.command()
@click.argument("path")
@click.pass_obj
def apply(config, path):
    """Create or update the resources declared at PATH"""
    _report(_run(config, Operation.APPLY, path))


@cli.command()
@click.argument("path")
@click.pass_obj
def prune(config, path):
    """Delete previously applied resources no longer declared at PATH"""
    _report(_run(config, Operation.PRUNE, path))


@cli.command()
@click.argument("path")
@click.pass_obj
def delete(config, path):
    """Delete every resource declared at PATH"""
    _report(_run(config, Operation.DELETE, path))


@cli.command()
@click.argument("path")
@click.pass_obj
def status(config, path):
    """Show whether the resources declared at PATH exist"""
    try:
        statuses = _status(config, path)
    except KapplyError as e:
        click.echo(f"Error: {e}", err=True)
        click.get_current_context().exit(1)
        return

    click.echo(format_status(statuses))


def main():
    cli(prog_name="kapply")


if __name__ == "__main__":
    main()
