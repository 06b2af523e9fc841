"""Command-line interface for pulsewire.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the server URL and auth token
- listen: Stay connected and print incoming events
- send: Send a single frame
"""

from __future__ import annotations

import logging
import sys

import click

from pulsewire.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    resolve_server_config,
    save_config,
)
from pulsewire.cli.configure import configure
from pulsewire.cli.listen import listen
from pulsewire.cli.send import send

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure the pulsewire logger to write to stderr.

    Args:
        verbose: Log at DEBUG instead of WARNING.
    """
    root_logger = logging.getLogger("pulsewire")
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)


@click.group()
@click.version_option(package_name="pulsewire")
def cli() -> None:
    """pulsewire - Realtime chat connection and notification client."""


cli.add_command(configure)
cli.add_command(listen)
cli.add_command(send)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "main",
    "resolve_server_config",
    "save_config",
    "setup_logging",
]
