"""contextbus CLI entry point: Click group with subcommands."""

import logging

import click

from contextbus import __version__


@click.group()
@click.version_option(version=__version__, prog_name="contextbus")
@click.option("-v", "--verbose", is_flag=True, help="Log registry activity at DEBUG level")
def cli(verbose: bool) -> None:
    """contextbus - synchronous event dispatcher with context-scoped listeners."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# Import and register subcommands
from contextbus.cli.replay import replay  # noqa: E402

cli.add_command(replay)
