"""deckhand command line entry point."""

from __future__ import annotations

import click

from deckhand import __version__
from deckhand.cli.commands.build import build
from deckhand.cli.commands.pipeline import pipeline
from deckhand.cli.commands.release import health, history, migrate, release, status


@click.group(name="deckhand")
@click.version_option(__version__, prog_name="deckhand")
def cli() -> None:
    """Release a containerized web application to a virtual machine."""


for _command in (build, release, status, history, migrate, health, pipeline):
    cli.add_command(_command)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
