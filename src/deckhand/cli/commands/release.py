"""CLI commands that act on deployment environments.

Implements ``deckhand release``, ``status``, ``history``, ``migrate`` and
``health``.
"""

from __future__ import annotations

import sys

import click

from deckhand.cli.commands.common import (
    EXIT_DEPLOYMENT_ERROR,
    common_options,
    handle_deployment_errors,
    init_logging,
)
from deckhand.config.loader import load_project_config
from deckhand.deploy.builder import resolve_revision
from deckhand.deploy.orchestrator import DeploymentOrchestrator
from deckhand.lib.logging_config import get_logger
from deckhand.models.config import ProjectConfig
from deckhand.models.release import DeploymentRequest, Release, ReleaseStatus

logger = get_logger(__name__)

_STATUS_COLORS = {
    ReleaseStatus.LIVE: "green",
    ReleaseStatus.ROLLED_BACK: "yellow",
    ReleaseStatus.FAILED: "red",
}


def _create_orchestrator(config: ProjectConfig) -> DeploymentOrchestrator:
    return DeploymentOrchestrator.from_config(config)


def _format_status(status: ReleaseStatus) -> str:
    return click.style(status.value, fg=_STATUS_COLORS.get(status))


def _display_release(release: Release) -> None:
    click.echo()
    click.secho(f"Release {release.release_id}", bold=True)
    click.echo(f"  Environment: {release.environment}")
    click.echo(f"  Revision:    {release.source_revision}")
    click.echo(f"  Status:      {_format_status(release.status)}")
    if release.registry_ref:
        click.echo(f"  Image:       {release.registry_ref.reference}")
    elif release.artifact:
        click.echo(f"  Image:       {release.artifact.full_name}")
    if release.failure:
        click.echo(f"  Failure:     {release.failure.kind} ({release.failure.operation})")
        click.echo(f"               {release.failure.message}")
    if release.rolled_back_to:
        click.echo(f"  Restored:    {release.rolled_back_to}")
    click.echo()


@click.command()
@click.argument("environment")
@click.option(
    "--revision",
    "-r",
    type=str,
    default=None,
    help="Source revision to release (defaults to git HEAD)",
)
@click.option(
    "--tag",
    type=str,
    default=None,
    help="Image tag (overrides tag_strategy)",
)
@common_options
def release(
    environment: str,
    revision: str | None,
    tag: str | None,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Build, ship, migrate and health-check a release of ENVIRONMENT.

    Rolls back to the previous live release when migration or the health
    gate fails.

    Example:

        deckhand release production --revision 3f2a9c1
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)
        source_revision = revision or resolve_revision()
        request = DeploymentRequest(
            source_revision=source_revision, environment=environment, tag=tag
        )

        if not quiet:
            click.echo(
                f"Releasing {source_revision[:12]} to {environment} "
                f"({config.registry.image_name})..."
            )

        logger.debug(f"Release request: {request.model_dump()}")
        with _create_orchestrator(config) as orchestrator:
            result = orchestrator.deploy(request)

        if quiet:
            click.echo(f"{result.release_id} {result.status.value}")
        else:
            _display_release(result)

        if result.status != ReleaseStatus.LIVE:
            sys.exit(EXIT_DEPLOYMENT_ERROR)


@click.command()
@click.argument("environment")
@common_options
def status(environment: str, config_path: str, verbose: bool, quiet: bool) -> None:
    """Show the live and previous release of ENVIRONMENT."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)
        with _create_orchestrator(config) as orchestrator:
            env_state, live = orchestrator.get_status(environment)
            if quiet:
                click.echo(env_state.live_release_id or "none")
                return
            container = orchestrator.service_status(environment)

        click.echo()
        click.secho(f"Environment {env_state.name}", bold=True)
        click.echo(f"  Host:      {env_state.host}")
        click.echo(f"  Container: {container.status}")
        if container.release_id and container.release_id != env_state.live_release_id:
            click.secho(
                f"  Warning:   container runs release {container.release_id}",
                fg="yellow",
            )
        click.echo(f"  Live:      {env_state.live_release_id or '(none)'}")
        click.echo(f"  Previous:  {env_state.previous_release_id or '(none)'}")
        if live is not None:
            click.echo(f"  Revision:  {live.source_revision}")
            if live.registry_ref:
                click.echo(f"  Image:     {live.registry_ref.reference}")
            click.echo(f"  Since:     {live.updated_at.isoformat()}")
        if env_state.secret_refs:
            click.echo(f"  Secrets:   {', '.join(env_state.secret_refs)}")
        click.echo()


@click.command()
@click.argument("environment")
@click.option("--limit", "-n", type=int, default=20, show_default=True)
@common_options
def history(
    environment: str, limit: int, config_path: str, verbose: bool, quiet: bool
) -> None:
    """List recent releases of ENVIRONMENT, newest first."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)
        with _create_orchestrator(config) as orchestrator:
            releases = orchestrator.history(environment)
        for item in list(reversed(releases))[:limit]:
            if quiet:
                click.echo(f"{item.release_id} {item.status.value}")
                continue
            click.echo(
                f"{item.release_id}  {item.created_at:%Y-%m-%d %H:%M:%S}  "
                f"{item.source_revision[:12]:<12}  {_format_status(item.status)}"
            )


@click.command()
@click.argument("environment")
@common_options
def migrate(environment: str, config_path: str, verbose: bool, quiet: bool) -> None:
    """Apply pending migrations to ENVIRONMENT outside a release."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)
        if config.migrations is None:
            click.echo("No migrations configured.")
            return
        with _create_orchestrator(config) as orchestrator:
            applied = orchestrator.run_migrations(environment)
        if quiet:
            click.echo(str(applied))
        else:
            click.secho(f"{applied} migration(s) applied to {environment}", fg="green")


@click.command()
@click.argument("environment")
@common_options
def health(environment: str, config_path: str, verbose: bool, quiet: bool) -> None:
    """Run the health gate against ENVIRONMENT."""
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)
        with _create_orchestrator(config) as orchestrator:
            report = orchestrator.check_health(environment)
        if quiet:
            click.echo("healthy")
            return
        click.secho(
            f"{report.target} healthy after {report.attempts} probe(s) "
            f"({report.elapsed:.1f}s)",
            fg="green",
        )
