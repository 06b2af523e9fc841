"""Configure command for pulsewire CLI.

Commands:
- configure: Store the server URL and auth token
"""

from __future__ import annotations

import click

from pulsewire.cli.config import get_config_file, load_config, save_config


@click.command()
@click.option("--server-url", help="Realtime server URL (http(s):// or ws(s)://).")
@click.option("--token", help="Authentication token.")
def configure(server_url: str | None, token: str | None) -> None:
    """Store connection settings in ~/.pulsewire/config.json."""
    if not server_url and not token:
        raise click.UsageError("Nothing to configure: pass --server-url and/or --token.")

    config = load_config()
    if server_url:
        config["server_url"] = server_url
    if token:
        config["token"] = token
    save_config(config)

    click.echo(f"Configuration saved to {get_config_file()}")
