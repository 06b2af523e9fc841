"""Listen command for pulsewire CLI.

Commands:
- listen: Stay connected, print wire events and show notifications
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass

import click

from pulsewire.cli.config import resolve_server_config
from pulsewire.client.connection import ConnectionManager
from pulsewire.client.events import ConnectionEvent
from pulsewire.client.protocol import WireEvent
from pulsewire.core.config import ArbiterConfig, ConnectionConfig, ServerConfig
from pulsewire.core.types import ConnectionState
from pulsewire.notifications.arbiter import NotificationArbiter
from pulsewire.notifications.bridge import NotificationBridge
from pulsewire.notifications.system import SystemNotifier
from pulsewire.notifications.types import CallbackListener, DisplayedNotification

logger = logging.getLogger(__name__)


@dataclass
class Client:
    """The composed realtime client."""

    connection: ConnectionManager
    arbiter: NotificationArbiter
    bridge: NotificationBridge
    notifier: SystemNotifier | None = None

    async def close(self) -> None:
        self.arbiter.stop_cleanup()
        self.arbiter.reset()
        await self.connection.close()
        if self.notifier is not None:
            await self.notifier.drain()


def build_client(
    server_config: ServerConfig,
    user_id: int | None = None,
    notify: bool = True,
    connection_config: ConnectionConfig | None = None,
    arbiter_config: ArbiterConfig | None = None,
) -> Client:
    """Compose connection, arbiter and bridge.

    Args:
        server_config: Where to connect.
        user_id: The local user, whose own messages do not notify.
        notify: Render notifications with the OS notifier.
        connection_config: Connection tuning.
        arbiter_config: Notification tuning.

    Returns:
        The wired client, not yet connected.
    """
    connection = ConnectionManager(server_config, connection_config)
    arbiter = NotificationArbiter(arbiter_config)
    bridge = NotificationBridge(arbiter, user_id=user_id)
    connection.subscribe(bridge)
    notifier = None
    if notify:
        # Every notification reaching the CLI came from the socket
        notifier = SystemNotifier(force=True)
        arbiter.add_listener(notifier)
    return Client(connection=connection, arbiter=arbiter, bridge=bridge, notifier=notifier)


def format_event(event: WireEvent) -> str:
    """One-line rendering of a wire event."""
    return f"{event.type} {json.dumps(event.to_message(), sort_keys=True)}"


async def run_listener(client: Client, show_heartbeats: bool = False) -> ConnectionState:
    """Connect and print events until the connection gives up.

    Returns:
        The final connection state.
    """
    stopped = asyncio.Event()

    def on_message(event: WireEvent) -> None:
        if event.type == "heartbeat" and not show_heartbeats:
            return
        click.echo(format_event(event))

    def on_state_changed(new: ConnectionState, old: ConnectionState) -> None:
        click.echo(f"[{old.value} -> {new.value}]", err=True)
        if new in (ConnectionState.ERROR, ConnectionState.DISCONNECTED):
            stopped.set()

    def on_error(error: Exception) -> None:
        click.echo(f"[error] {error}", err=True)

    def on_displayed(notification: DisplayedNotification) -> None:
        envelope = notification.envelope
        click.echo(f"[notification] {envelope.title}: {envelope.body}", err=True)

    connection = client.connection
    connection.on(ConnectionEvent.MESSAGE, on_message)
    connection.on(ConnectionEvent.CONNECTION_STATE_CHANGED, on_state_changed)
    connection.on(ConnectionEvent.ERROR, on_error)
    client.arbiter.add_listener(CallbackListener(on_displayed=on_displayed))
    client.arbiter.start_cleanup()

    try:
        await connection.connect()
        await stopped.wait()
        return connection.state
    finally:
        await client.close()


@click.command()
@click.option("--server-url", help="Override the configured server URL.")
@click.option("--token", help="Override the configured token.")
@click.option("--user-id", type=int, help="Local user id (own messages do not notify).")
@click.option("--notify/--no-notify", default=True, help="Show OS notifications.")
@click.option("--heartbeats", is_flag=True, help="Also print heartbeat echoes.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def listen(
    server_url: str | None,
    token: str | None,
    user_id: int | None,
    notify: bool,
    heartbeats: bool,
    verbose: bool,
) -> None:
    """Stay connected and print incoming events.

    Reconnects automatically; exits when reconnection gives up or on Ctrl+C.
    """
    from pulsewire.cli import setup_logging

    setup_logging(verbose)

    server_config = resolve_server_config(server_url, token)
    if server_config is None:
        click.echo("Error: No server configured. Run 'pulsewire configure' first.", err=True)
        sys.exit(1)

    client = build_client(server_config, user_id=user_id, notify=notify)
    click.echo(f"Listening on {server_config.ws_url} (Ctrl+C to stop)", err=True)
    try:
        state = asyncio.run(run_listener(client, show_heartbeats=heartbeats))
    except KeyboardInterrupt:
        click.echo("Stopped", err=True)
        return

    if state is ConnectionState.ERROR:
        sys.exit(1)
