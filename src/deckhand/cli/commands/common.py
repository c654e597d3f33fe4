"""Options and error handling shared by deckhand commands."""

from __future__ import annotations

import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any, TypeVar

import click

from deckhand.lib.errors import (
    ConfigError,
    DeploymentAlert,
    DeploymentError,
    FileNotFoundError,
)
from deckhand.lib.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

EXIT_CONFIG_ERROR = 2
EXIT_DEPLOYMENT_ERROR = 3
EXIT_ALERT = 4


def common_options(fn: F) -> F:
    """Attach --config, --verbose and --quiet to a command."""
    fn = click.option(
        "--quiet",
        "-q",
        is_flag=True,
        envvar="DECKHAND_QUIET",
        help="Suppress progress output",
    )(fn)
    fn = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        envvar="DECKHAND_VERBOSE",
        help="Enable verbose debug logging",
    )(fn)
    fn = click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(dir_okay=False),
        default="deckhand.yaml",
        show_default=True,
        help="Path to the project file",
    )(fn)
    return fn


def init_logging(verbose: bool, quiet: bool) -> None:
    """Configure logging unless output is suppressed."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in commands.

    Exit codes:
        2: Configuration error
        3: Deployment error
        4: Fatal alert (rollback failure, migration checksum conflict)
    """
    try:
        yield
    except (ConfigError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except DeploymentError as e:
        if isinstance(e, DeploymentAlert):
            click.secho(
                "ALERT: operator intervention required", fg="red", bold=True, err=True
            )
            click.echo(f"  {e.message}", err=True)
            if e.release_id:
                click.echo(f"  Release: {e.release_id}", err=True)
            sys.exit(EXIT_ALERT)
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(EXIT_DEPLOYMENT_ERROR)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_DEPLOYMENT_ERROR)
