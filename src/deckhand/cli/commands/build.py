"""CLI command for building the application image.

Implements ``deckhand build``, which builds the image locally without
touching any environment.
"""

from __future__ import annotations

import sys
from typing import Any

import click

from deckhand.cli.commands.common import (
    common_options,
    handle_deployment_errors,
    init_logging,
)
from deckhand.config.loader import load_project_config
from deckhand.deploy.builder import (
    BuildResult,
    ContainerBuilder,
    generate_tag,
    get_oci_labels,
    resolve_revision,
)
from deckhand.lib.logging_config import get_logger

logger = get_logger(__name__)


@click.command()
@click.option(
    "--tag",
    type=str,
    default=None,
    help="Custom tag for the image (overrides tag_strategy)",
)
@click.option(
    "--no-cache",
    is_flag=True,
    help="Build without using cache",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be done without executing",
)
@common_options
def build(
    tag: str | None,
    no_cache: bool,
    dry_run: bool,
    config_path: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Build the application image for the current revision.

    Example:

        deckhand build

        deckhand build --tag v1.0.0

        deckhand build --dry-run
    """
    init_logging(verbose, quiet)

    with handle_deployment_errors():
        config = load_project_config(config_path)

        if tag:
            image_tag = tag
            source_revision = None
        else:
            source_revision = resolve_revision()
            image_tag = generate_tag(
                config.registry.tag_strategy,
                config.registry.custom_tag,
                source_revision=source_revision,
            )

        image_name = config.registry.image_name
        full_image_name = f"{image_name}:{image_tag}"

        if not quiet:
            click.echo()
            click.secho("Build Configuration:", bold=True)
            click.echo(f"  Project:    {config.project}")
            click.echo(f"  Image:      {full_image_name}")
            click.echo(f"  Context:    {config.build.context}")
            click.echo(f"  Dockerfile: {config.build.dockerfile}")
            click.echo(f"  Platform:   {config.build.platform}")
            click.echo()

        if dry_run:
            click.secho("[DRY RUN] No image was built", fg="yellow")
            sys.exit(0)

        if not quiet:
            click.echo("Connecting to Docker...")
        builder = ContainerBuilder()

        build_kwargs: dict[str, Any] = {}
        if no_cache:
            build_kwargs["nocache"] = True
        if config.build.build_args:
            build_kwargs["buildargs"] = dict(config.build.build_args)

        if not quiet:
            click.echo(f"Building image {full_image_name}...")

        result = builder.build(
            build_context=config.build.context,
            image_name=image_name,
            tag=image_tag,
            labels=get_oci_labels(
                config.project, image_tag, source_sha=source_revision
            ),
            dockerfile=config.build.dockerfile,
            platform=config.build.platform,
            **build_kwargs,
        )

        if verbose and result.log_lines:
            click.secho("Build Output:", bold=True)
            for line in result.log_lines:
                if line.strip():
                    click.echo(f"  {line}")
            click.echo()

        _display_build_success(result, quiet)


def _display_build_success(result: BuildResult, quiet: bool) -> None:
    """Display build success message.

    Args:
        result: Build result with image details
        quiet: If True, only show the image reference
    """
    if quiet:
        click.echo(result.full_name)
        return

    click.echo()
    click.secho("  Build Successful!", fg="green", bold=True)
    click.echo(f"  Image:    {result.full_name}")
    click.echo(f"  ID:       {result.image_id[:19]}")
    click.echo()
    click.secho("  Next step:", bold=True)
    click.echo("    deckhand release <environment>")
    click.echo()
