"""CLI command for generating the CI release workflow."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

import click

from deckhand.cli.commands.common import (
    common_options,
    handle_deployment_errors,
    init_logging,
)
from deckhand.config.loader import load_project_config
from deckhand.deploy.pipeline import generate_pipeline, is_hosted_runner
from deckhand.lib.errors import ConfigError
from deckhand.models.config import ProjectConfig


def _pipeline_secrets(config: ProjectConfig, environment: str) -> list[str]:
    names = list(config.get_environment(environment).secrets)
    prefix = config.registry.credentials_env_prefix
    if prefix:
        names.extend([f"{prefix}_USERNAME", f"{prefix}_PASSWORD"])
    return names


@click.command()
@click.argument("environment")
@click.option("--branch", default="main", show_default=True, help="Triggering branch")
@click.option(
    "--ssh-key-secret",
    default=None,
    help="CI secret holding the SSH key for ssh:// hosts",
)
@click.option(
    "--runs-on", default="ubuntu-latest", show_default=True, help="Runner label"
)
@click.option(
    "--state-dir",
    default=None,
    help="Absolute deckhand state directory on the runner",
)
@click.option(
    "--state-remote",
    default=None,
    help="rsync target (user@host:path) keeping state between runs; "
    "defaults to .deckhand/<project> on ssh:// hosts for hosted runners",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the workflow to a file instead of stdout",
)
@common_options
def pipeline(
    environment: str,
    branch: str,
    ssh_key_secret: str | None,
    runs_on: str,
    state_dir: str | None,
    state_remote: str | None,
    output: str | None,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Generate a CI workflow that releases ENVIRONMENT on every push.

    Example:

        deckhand pipeline production -o .github/workflows/release.yml
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)
        if environment not in config.environments:
            raise ConfigError(
                field="environment", message=f"Unknown environment '{environment}'"
            )

        docker_url = urlparse(config.environments[environment].host.docker_url)
        ssh_host = docker_url.hostname if docker_url.scheme == "ssh" else None
        if state_remote is None and ssh_host and is_hosted_runner(runs_on):
            login = ssh_host
            if docker_url.username:
                login = f"{docker_url.username}@{ssh_host}"
            state_remote = f"{login}:.deckhand/{config.project}"

        try:
            workflow = generate_pipeline(
                config.project,
                environment,
                branch=branch,
                secrets=_pipeline_secrets(config, environment),
                ssh_key_secret=ssh_key_secret if ssh_host else None,
                ssh_host=ssh_host,
                runs_on=runs_on,
                state_dir=state_dir,
                state_remote=state_remote,
            )
        except ValueError as exc:
            raise ConfigError(field="pipeline", message=str(exc)) from exc

        if output is None:
            click.echo(workflow, nl=False)
            return

        out_path = Path(output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(workflow, encoding="utf-8")
        if not quiet:
            click.secho(f"Wrote {out_path}", fg="green")
