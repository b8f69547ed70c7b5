"""Deployment operator CLI (mzo).

Usage:
    mzo create --size xsmall --mz-version v0.10.0
    mzo read <id>
    mzo update <id> --size small --mz-version v0.11.0
    mzo delete <id>

The access token is read from MZCLOUD_ACCESS_TOKEN unless --access-token is
given. Every command prints the resulting deployment view as JSON and exits
non-zero when reconciliation fails.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import click
from azure.core.credentials import TokenCredential
from pydantic import ValidationError

from .client import MzCloudClient
from .config import Config, ConfigurationError
from .models import DesiredConfiguration
from .reconciler import DeploymentReconciler, ReconcileResult
from .security import ACCESS_TOKEN_ENV_VAR, CredentialError, credential_from_env

VERSION = "0.1.0"

# Exit codes
EXIT_RECONCILE_FAILED = 1
EXIT_SETUP_FAILED = 2

Operation = Callable[[DeploymentReconciler, TokenCredential], Awaitable[ReconcileResult]]


class SetupError(click.ClickException):
    """Configuration or credential problem detected before any remote call."""

    exit_code = EXIT_SETUP_FAILED


def build_desired(size: str, mz_version: str) -> DesiredConfiguration:
    """Validate command-line options into a desired configuration."""
    try:
        return DesiredConfiguration(size=size, mz_version=mz_version)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise click.BadParameter(problems) from e


def result_to_dict(result: ReconcileResult) -> dict[str, Any]:
    """Render a reconcile result for JSON output."""
    return {
        "operation": result.operation.value,
        "deployment_id": result.deployment_id,
        "state": result.state.value,
        "deployment": result.view.model_dump() if result.view is not None else None,
        "polls": result.polls,
        "duration_seconds": result.duration_seconds,
        "error": str(result.error) if result.error is not None else None,
    }


def run_operation(ctx: click.Context, operation: Operation) -> None:
    """Build the reconciler, run one operation and report its result."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise SetupError(str(e)) from e

    try:
        credential = credential_from_env(ctx.obj.get("access_token"))
    except CredentialError as e:
        raise SetupError(str(e)) from e

    with MzCloudClient(config) as client:
        reconciler = DeploymentReconciler(client, config)
        result = asyncio.run(operation(reconciler, credential))

    click.echo(json.dumps(result_to_dict(result), indent=2))

    if not result.success:
        ctx.exit(EXIT_RECONCILE_FAILED)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=VERSION, prog_name="mzo")
@click.option(
    "--access-token",
    envvar=ACCESS_TOKEN_ENV_VAR,
    default=None,
    help=f"API access token (default: ${ACCESS_TOKEN_ENV_VAR}).",
)
@click.pass_context
def cli(ctx: click.Context, access_token: str | None) -> None:
    """Materialize Cloud deployment operator (mzo).

    \b
    Quick Start:
        export MZCLOUD_ACCESS_TOKEN=...
        mzo create --size xsmall --mz-version v0.10.0
        mzo delete <id>
    """
    ctx.ensure_object(dict)
    ctx.obj["access_token"] = access_token


# =============================================================================
# Lifecycle Commands
# =============================================================================


@cli.command()
@click.option("--size", required=True, help="Deployment size (e.g. xsmall)")
@click.option("--mz-version", required=True, help="Materialize version to deploy")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait for the deployment to become ready (default: $CREATE_TIMEOUT)",
)
@click.pass_context
def create(ctx: click.Context, size: str, mz_version: str, timeout: float | None) -> None:
    """Create a deployment and wait until it is ready."""
    desired = build_desired(size, mz_version)
    run_operation(
        ctx,
        lambda reconciler, credential: reconciler.create(
            desired, credential=credential, timeout=timeout
        ),
    )


@cli.command()
@click.argument("deployment_id")
@click.pass_context
def read(ctx: click.Context, deployment_id: str) -> None:
    """Show the current state of a deployment."""
    run_operation(
        ctx,
        lambda reconciler, credential: reconciler.read(deployment_id, credential=credential),
    )


@cli.command()
@click.argument("deployment_id")
@click.option("--size", required=True, help="Deployment size (e.g. small)")
@click.option("--mz-version", required=True, help="Materialize version to deploy")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait for the update to converge (default: $UPDATE_TIMEOUT)",
)
@click.pass_context
def update(
    ctx: click.Context,
    deployment_id: str,
    size: str,
    mz_version: str,
    timeout: float | None,
) -> None:
    """Apply a new size/version and wait until it is ready."""
    desired = build_desired(size, mz_version)
    run_operation(
        ctx,
        lambda reconciler, credential: reconciler.update(
            deployment_id, desired, credential=credential, timeout=timeout
        ),
    )


@cli.command()
@click.argument("deployment_id")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait for the deployment to disappear (default: $DELETE_TIMEOUT)",
)
@click.pass_context
def delete(ctx: click.Context, deployment_id: str, timeout: float | None) -> None:
    """Delete a deployment and wait until it is gone."""
    run_operation(
        ctx,
        lambda reconciler, credential: reconciler.delete(
            deployment_id, credential=credential, timeout=timeout
        ),
    )
