"""Command-line interface for contextbus."""

from contextbus.cli.main import cli

__all__ = ["cli"]
