"""Send command for pulsewire CLI.

Commands:
- send: Connect, send one frame and disconnect
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from pulsewire.cli.config import resolve_server_config
from pulsewire.client.connection import ConnectionManager
from pulsewire.core.config import ConnectionConfig, ServerConfig


def parse_field(value: str) -> tuple[str, Any]:
    """Parse a ``key=value`` option.

    The value is decoded as JSON when possible (numbers, booleans, objects)
    and kept as a string otherwise.

    Raises:
        click.BadParameter: If there is no ``=``.
    """
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"Expected key=value, got {value!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


async def send_frame(
    server_config: ServerConfig,
    payload: dict[str, Any],
    connection_config: ConnectionConfig | None = None,
) -> bool:
    """Open a connection, write one frame and close.

    Returns:
        True if the frame was written to the socket.
    """
    manager = ConnectionManager(
        server_config,
        connection_config or ConnectionConfig(auto_reconnect=False),
    )
    try:
        if not await manager.connect():
            return False
        manager.send_message(payload)
        await manager.drain()
        # A write failure puts the frame back in the queue
        return manager.queue_size == 0
    finally:
        await manager.close()


@click.command()
@click.argument("event_type")
@click.option(
    "--field",
    "-f",
    "fields",
    multiple=True,
    help="Frame field as key=value (repeatable). Values are parsed as JSON when possible.",
)
@click.option("--server-url", help="Override the configured server URL.")
@click.option("--token", help="Override the configured token.")
def send(event_type: str, fields: tuple[str, ...], server_url: str | None, token: str | None) -> None:
    """Send a single EVENT_TYPE frame to the server."""
    server_config = resolve_server_config(server_url, token)
    if server_config is None:
        click.echo("Error: No server configured. Run 'pulsewire configure' first.", err=True)
        sys.exit(1)

    payload: dict[str, Any] = {"type": event_type}
    payload.update(parse_field(f) for f in fields)

    try:
        sent = asyncio.run(send_frame(server_config, payload))
    except (TypeError, ValueError) as e:
        click.echo(f"Error: Cannot encode frame: {e}", err=True)
        sys.exit(1)

    if not sent:
        click.echo(f"Error: Could not deliver {event_type} to {server_config.ws_url}", err=True)
        sys.exit(1)
    click.echo(f"Sent {event_type}")
