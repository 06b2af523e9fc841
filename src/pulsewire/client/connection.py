"""Self-healing WebSocket client.

This module provides:
- ConnectionManager: Owns one socket; state machine with auto-reconnect,
  heartbeat/timeout detection and an outbound queue
- HeartbeatState: Liveness bookkeeping rebuilt on every connect
- Transport / Connector: The socket surface the manager drives

Architecture:
    connect() ──► Connecting ──open──► Connected ──close/error/timeout──► Reconnecting
                      ▲                                                       │
                      └──────────────────── backoff timer ────────────────────┘

    send_message() ──(connected)──► outbox ──► writer task ──► socket
                   └─(otherwise)──► OutboundQueue ──(flush on open, FIFO)──┘

    socket ──► reader task ──► decode_frame ──► emit(MESSAGE, event)

Everything runs on one asyncio loop. Timers go through a Scheduler so tests
can drive backoff and heartbeat with a virtual clock.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import random
import ssl
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from pulsewire.client.events import ConnectionEvent, EventEmitter, Handler
from pulsewire.client.protocol import (
    ChatJoinEvent,
    HeartbeatEvent,
    WireEvent,
    decode_frame,
    encode_event,
)
from pulsewire.client.queue import OutboundQueue, QueuedMessage
from pulsewire.client.retry import backoff_delay
from pulsewire.client.subscribers import RealtimeSubscriber
from pulsewire.core.config import ConnectionConfig, ServerConfig
from pulsewire.core.errors import (
    HeartbeatTimeoutError,
    InvalidFrameError,
    ReconnectionExhaustedError,
    TransportError,
    UnknownEventTypeError,
)
from pulsewire.core.scheduler import AsyncioScheduler
from pulsewire.core.types import ConnectionState

if TYPE_CHECKING:
    from pulsewire.core.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """The part of a websockets ClientConnection the manager uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[Transport]]

# Frames waiting for the writer task: the message and its encoded text
_Outbox = asyncio.Queue[tuple[QueuedMessage, str]]


@dataclass
class HeartbeatState:
    """Liveness bookkeeping for the current connection.

    Attributes:
        last_sent_at: Scheduler time of the last probe.
        last_ack_at: Scheduler time of the last server frame.
        timeout_handle: Armed heartbeat-timeout timer, if any.
        probe_handle: Timer for the next probe.
    """

    last_sent_at: float | None = None
    last_ack_at: float | None = None
    timeout_handle: TimerHandle | None = None
    probe_handle: TimerHandle | None = None

    def cancel(self) -> None:
        """Disarm both timers."""
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
        if self.probe_handle is not None:
            self.probe_handle.cancel()
            self.probe_handle = None


class ConnectionManager:
    """WebSocket client with reconnection, heartbeat and an outbound queue.

    Usage:
        manager = ConnectionManager(
            ServerConfig(server_url="wss://chat.example.com/ws", token=token),
        )
        manager.on(ConnectionEvent.MESSAGE, handle_event)
        await manager.connect()

        manager.send_message(MessageSendEvent.create(conversation_id=7, content="hi"))

        await manager.close()

    All methods must be called from the thread running the event loop.
    """

    def __init__(
        self,
        config: ServerConfig,
        connection_config: ConnectionConfig | None = None,
        scheduler: Scheduler | None = None,
        connector: Connector | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the connection manager.

        Args:
            config: Server URL and auth token. Copied; use
                update_auth_token() to rotate the token.
            connection_config: Heartbeat, backoff and queue tuning.
            scheduler: Clock and timers (defaults to the running loop).
            connector: Coroutine function opening a socket for a URL
                (defaults to websockets.connect).
            rand: Random source for backoff jitter.
        """
        self._server_config = dataclasses.replace(config)
        self._config = connection_config or ConnectionConfig()
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._connector: Connector = connector or self._open_websocket
        self._rand = rand

        self._events = EventEmitter()
        self._queue = OutboundQueue(self._config.message_queue_max_size)
        self._subscribers: list[RealtimeSubscriber] = []

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._ws: Transport | None = None
        self._opening: asyncio.Future[bool] | None = None
        self._outbox: _Outbox | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        # Reconnection state
        self._reconnection_attempts = 0
        self._reconnect_timer: TimerHandle | None = None
        self._reconnect_task: asyncio.Task[bool] | None = None

        self._heartbeat = HeartbeatState()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        """Check if currently connected."""
        return self._state is ConnectionState.CONNECTED

    @property
    def connection_url(self) -> str:
        """URL for the next connection attempt, derived from the current token."""
        return self._server_config.connection_url

    @property
    def queue_size(self) -> int:
        """Number of messages waiting for a connection."""
        return len(self._queue)

    @property
    def queued_messages(self) -> list[QueuedMessage]:
        """Snapshot of the outbound queue in FIFO order."""
        return list(self._queue)

    @property
    def reconnection_attempts(self) -> int:
        return self._reconnection_attempts

    @property
    def heartbeat(self) -> HeartbeatState:
        return self._heartbeat

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: ConnectionEvent | str, handler: Handler) -> None:
        """Register a handler for an event (see ConnectionEvent)."""
        self._events.on(event, handler)

    def off(self, event: ConnectionEvent | str, handler: Handler) -> None:
        """Remove a handler registered with on()."""
        self._events.off(event, handler)

    def subscribe(self, subscriber: RealtimeSubscriber) -> None:
        """Attach a store implementing RealtimeSubscriber.

        Raises:
            TypeError: If the object does not implement attach/detach.
        """
        if not isinstance(subscriber, RealtimeSubscriber):
            raise TypeError(
                f"{type(subscriber).__name__} does not implement RealtimeSubscriber"
            )
        if subscriber in self._subscribers:
            return
        subscriber.attach(self)
        self._subscribers.append(subscriber)
        logger.debug("Attached subscriber %s", type(subscriber).__name__)

    def unsubscribe(self, subscriber: RealtimeSubscriber) -> None:
        """Detach a subscriber; unknown subscribers are ignored."""
        if subscriber not in self._subscribers:
            return
        self._subscribers.remove(subscriber)
        subscriber.detach(self)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """Open the socket.

        Idempotent: while Connecting, awaits the attempt in flight; while
        Connected, returns immediately. Opening is bounded by the server
        config's open_timeout.

        Returns:
            True if the socket is open, False if the attempt failed (the
            manager is then Reconnecting, Error or Disconnected).
        """
        if self._state is ConnectionState.CONNECTED:
            return True
        if self._state is ConnectionState.CONNECTING and self._opening is not None:
            return await asyncio.shield(self._opening)

        if self._state in (ConnectionState.ERROR, ConnectionState.DISCONNECTED):
            # An explicit connect starts a fresh backoff cycle
            self._reconnection_attempts = 0
        self._cancel_reconnect_timer()
        opening: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._opening = opening
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s", self._server_config.ws_url)

        try:
            ws = await asyncio.wait_for(
                self._connector(self.connection_url),
                timeout=self._server_config.open_timeout,
            )
        except (WebSocketException, OSError, TimeoutError) as e:
            if self._opening is opening:
                self._opening = None
                reason = str(e) or type(e).__name__
                logger.warning("Connection attempt failed: %s", reason)
                self._events.emit(
                    ConnectionEvent.ERROR, TransportError(f"Connection failed: {reason}")
                )
                self._schedule_reconnect(fallback=ConnectionState.ERROR)
            _resolve(opening, False)
            return False

        if self._opening is not opening:
            # disconnect() or a token update superseded this attempt
            logger.debug("Discarding socket opened by a superseded attempt")
            self._spawn(self._close_transport(ws))
            _resolve(opening, False)
            return False

        self._opening = None
        self._on_open(ws)
        _resolve(opening, True)
        return True

    def disconnect(self) -> None:
        """Close the connection and cancel every timer.

        Always ends in Disconnected. Queued messages are kept so a later
        connect() in this session still delivers them.
        """
        self._cancel_reconnect_timer()
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        if self._opening is not None:
            _resolve(self._opening, False)
            self._opening = None

        ws = self._release_transport()
        if ws is not None:
            self._spawn(self._close_transport(ws))

        self._reconnection_attempts = 0
        if self._state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected")
            self._events.emit(ConnectionEvent.DISCONNECTED)

    async def close(self) -> None:
        """Disconnect, detach subscribers and wait for background tasks."""
        self.disconnect()
        for subscriber in list(self._subscribers):
            self.unsubscribe(subscriber)
        pending = [task for task in self._background if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def update_auth_token(self, token: str) -> bool:
        """Rotate the auth token.

        If a connection is live, being established, retrying or has given
        up, it is torn down and rebuilt with a URL carrying the new token.

        Returns:
            True if connected afterwards.
        """
        self._server_config.token = token
        if self._state is ConnectionState.DISCONNECTED:
            return False
        logger.info("Auth token updated, reconnecting")
        self.disconnect()
        return await self.connect()

    async def force_reconnect(self) -> bool:
        """Tear down the socket and connect again with a fresh retry budget."""
        logger.info("Forcing reconnect")
        self.disconnect()
        return await self.connect()

    # =========================================================================
    # Sending
    # =========================================================================

    def send_message(self, event: WireEvent | dict[str, Any]) -> bool:
        """Send an event, or queue it while not connected.

        Args:
            event: A WireEvent or a plain JSON-serializable dict with a type.

        Returns:
            True if handed to the socket writer, False if queued.

        Raises:
            TypeError: If the payload is not JSON-serializable.
            ValueError: If the payload contains circular references or NaN.
        """
        payload = event.to_message() if isinstance(event, WireEvent) else event
        raw = encode_event(payload)

        if self._state is ConnectionState.CONNECTED and self._outbox is not None:
            self._outbox.put_nowait((QueuedMessage(payload=payload, attempts=1), raw))
            return True

        self._queue.put(payload)
        logger.debug(
            "Not connected (%s), queued %s (queue size: %d)",
            self._state.value,
            payload.get("type"),
            len(self._queue),
        )
        return False

    def join_conversation(self, conversation_id: int, user_id: int) -> bool:
        """Send chat.join for a conversation."""
        return self.send_message(ChatJoinEvent(conversation_id=conversation_id, user_id=user_id))

    async def drain(self) -> None:
        """Wait until every frame handed to the writer has been written."""
        if self._outbox is not None:
            await self._outbox.join()

    def clear_queue(self) -> int:
        """Drop every queued message.

        Returns:
            Number of messages removed.
        """
        return self._queue.clear()

    def get_connection_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "state": self._state.value,
            "reconnection_attempts": self._reconnection_attempts,
            "message_queue_size": len(self._queue),
            "last_heartbeat_sent": self._heartbeat.last_sent_at,
            "last_heartbeat_ack": self._heartbeat.last_ack_at,
            "is_connected": self.connected,
        }

    # =========================================================================
    # Connection internals
    # =========================================================================

    async def _open_websocket(self, url: str) -> Transport:
        """Default connector using websockets."""
        ssl_context: ssl.SSLContext | None = None
        if url.startswith("wss://"):
            ssl_context = ssl.create_default_context()
            if not self._server_config.verify_ssl:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        # Liveness is handled by the application heartbeat, not protocol pings
        return await websockets.connect(
            url,
            ssl=ssl_context,
            open_timeout=None,
            close_timeout=5,
            ping_interval=None,
        )

    def _on_open(self, ws: Transport) -> None:
        """Enter Connected: reset backoff, flush the queue, start heartbeat."""
        self._ws = ws
        self._reconnection_attempts = 0
        self._outbox = asyncio.Queue()

        # Queued messages go out before anything sent from state handlers
        self._flush_queue(self._outbox)

        self._reader_task = self._spawn(self._read_loop(ws))
        self._writer_task = self._spawn(self._write_loop(ws, self._outbox))

        self._set_state(ConnectionState.CONNECTED)
        self._start_heartbeat()
        logger.info("Connected to %s", self._server_config.ws_url)
        self._events.emit(ConnectionEvent.CONNECTED)

    def _flush_queue(self, outbox: _Outbox) -> None:
        """Move queued messages to the writer in FIFO order."""
        flushed = 0
        for message in self._queue.drain():
            if message.attempts >= self._config.max_send_attempts:
                logger.warning(
                    "Dropping %s after %d send attempts", message, message.attempts
                )
                continue
            try:
                raw = encode_event(message.payload)
            except (TypeError, ValueError) as e:
                logger.warning("Dropping unserializable queued %s: %s", message, e)
                continue
            message.attempts += 1
            outbox.put_nowait((message, raw))
            flushed += 1
        if flushed:
            logger.info("Flushing %d queued messages", flushed)

    async def _read_loop(self, ws: Transport) -> None:
        """Receive frames until the socket closes."""
        error: Exception | None = None
        try:
            while True:
                raw = await ws.recv()
                self._on_frame(raw)
        except ConnectionClosedOK:
            logger.info("Connection closed by server")
        except ConnectionClosed as e:
            error = TransportError(f"Connection closed: {e}")
        except (WebSocketException, OSError) as e:
            error = TransportError(f"Connection error: {e}")
        self._on_connection_lost(ws, error)

    async def _write_loop(self, ws: Transport, outbox: _Outbox) -> None:
        """Write frames in order; on failure return them to the queue."""
        while True:
            message, raw = await outbox.get()
            try:
                await ws.send(raw)
                logger.debug("Sent %s", message.type)
            except (WebSocketException, OSError) as e:
                logger.warning("Failed to send %s: %s", message, e)
                self._requeue_unsent([message, *_reclaim(outbox)])
                self._on_connection_lost(ws, TransportError(f"Send failed: {e}"))
                return
            finally:
                outbox.task_done()

    def _on_frame(self, raw: str | bytes) -> None:
        """Handle one inbound frame."""
        self._on_server_traffic()
        try:
            event = decode_frame(raw)
        except UnknownEventTypeError as e:
            logger.warning("Discarding frame: %s", e)
            return
        except InvalidFrameError as e:
            logger.warning("Invalid frame received: %s", e)
            self._events.emit(ConnectionEvent.ERROR, e)
            return

        logger.debug("Received %s", event.type)
        self._events.emit(ConnectionEvent.MESSAGE, event)

    def _on_connection_lost(self, ws: Transport, error: Exception | None) -> None:
        """Leave Connected after a close, error or heartbeat timeout."""
        if ws is not self._ws:
            # Stale socket already replaced or released
            return

        self._release_transport()
        self._spawn(self._close_transport(ws))

        if error is not None:
            logger.warning("Connection lost: %s", error)
            self._events.emit(ConnectionEvent.ERROR, error)
        self._events.emit(ConnectionEvent.DISCONNECTED)
        self._schedule_reconnect(fallback=ConnectionState.DISCONNECTED)

    def _release_transport(self) -> Transport | None:
        """Detach the socket, stop heartbeat and the reader/writer tasks.

        Frames the writer had not sent yet go back to the head of the queue.

        Returns:
            The released socket, still open.
        """
        ws = self._ws
        self._ws = None
        self._heartbeat.cancel()

        current = asyncio.current_task()
        for task in (self._reader_task, self._writer_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._reader_task = None
        self._writer_task = None

        if self._outbox is not None:
            self._requeue_unsent(_reclaim(self._outbox))
            self._outbox = None
        return ws

    def _requeue_unsent(self, messages: list[QueuedMessage]) -> None:
        """Return unwritten frames to the head of the queue.

        Heartbeat probes are dropped; a stale probe proves nothing on the
        next connection.
        """
        unsent = [m for m in messages if m.type != HeartbeatEvent.type]
        if unsent:
            self._queue.push_front(unsent)

    async def _close_transport(self, ws: Transport) -> None:
        """Close a socket, ignoring errors from one that is already gone."""
        with contextlib.suppress(WebSocketException, OSError):
            await ws.close()

    # =========================================================================
    # Reconnection
    # =========================================================================

    def _schedule_reconnect(self, fallback: ConnectionState) -> None:
        """Arm the backoff timer, or settle in a terminal state.

        Args:
            fallback: State to settle in when auto-reconnect is disabled.
        """
        if not self._config.auto_reconnect:
            self._set_state(fallback)
            return

        if self._reconnection_attempts >= self._config.max_reconnection_attempts:
            logger.error(
                "Max reconnection attempts reached (%d), giving up",
                self._reconnection_attempts,
            )
            self._set_state(ConnectionState.ERROR)
            self._events.emit(
                ConnectionEvent.ERROR,
                ReconnectionExhaustedError(self._reconnection_attempts),
            )
            return

        delay = backoff_delay(
            self._reconnection_attempts,
            initial_backoff=self._config.reconnection_delay,
            max_backoff=self._config.max_reconnection_delay,
            jitter=self._config.jitter,
            rand=self._rand,
        )
        self._set_state(ConnectionState.RECONNECTING)
        self._events.emit(ConnectionEvent.RECONNECTING)
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            delay,
            self._reconnection_attempts + 1,
            self._config.max_reconnection_attempts,
        )
        self._reconnect_timer = self._scheduler.call_later(delay, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        if self._state is not ConnectionState.RECONNECTING:
            return
        self._reconnection_attempts += 1
        self._events.emit(ConnectionEvent.RECONNECTION_ATTEMPT, self._reconnection_attempts)
        self._reconnect_task = self._spawn(self.connect())

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    # =========================================================================
    # Heartbeat
    # =========================================================================

    def _start_heartbeat(self) -> None:
        self._heartbeat.cancel()
        self._heartbeat = HeartbeatState()
        self._schedule_probe()

    def _schedule_probe(self) -> None:
        if self._heartbeat.probe_handle is not None:
            self._heartbeat.probe_handle.cancel()
        self._heartbeat.probe_handle = self._scheduler.call_later(
            self._config.heartbeat_interval, self._send_heartbeat
        )

    def _send_heartbeat(self) -> None:
        """Send a probe and arm the timeout unless one is already armed."""
        self._heartbeat.probe_handle = None
        if self._state is not ConnectionState.CONNECTED:
            return

        self._heartbeat.last_sent_at = self._scheduler.now()
        self.send_message(HeartbeatEvent.now())
        if self._heartbeat.timeout_handle is None:
            self._heartbeat.timeout_handle = self._scheduler.call_later(
                self._config.heartbeat_timeout, self._on_heartbeat_timeout
            )
        self._schedule_probe()

    def _on_server_traffic(self) -> None:
        """Any inbound frame proves liveness: disarm timeout, reschedule probe."""
        self._heartbeat.last_ack_at = self._scheduler.now()
        if self._heartbeat.timeout_handle is not None:
            self._heartbeat.timeout_handle.cancel()
            self._heartbeat.timeout_handle = None
        if self._state is ConnectionState.CONNECTED:
            self._schedule_probe()

    def _on_heartbeat_timeout(self) -> None:
        self._heartbeat.timeout_handle = None
        ws = self._ws
        if self._state is not ConnectionState.CONNECTED or ws is None:
            return
        logger.warning(
            "Heartbeat timeout: no server traffic for %.1fs", self._config.heartbeat_timeout
        )
        self._events.emit(ConnectionEvent.CONNECTION_TIMEOUT)
        self._on_connection_lost(ws, HeartbeatTimeoutError(self._config.heartbeat_timeout))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.debug("Connection state: %s -> %s", old_state.value, new_state.value)
        self._events.emit(ConnectionEvent.CONNECTION_STATE_CHANGED, new_state, old_state)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        """Forget a finished background task and log its failure, if any."""
        self._background.discard(task)
        if task is self._reconnect_task:
            self._reconnect_task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)


def _resolve(future: asyncio.Future[bool], value: bool) -> None:
    if not future.done():
        future.set_result(value)


def _reclaim(outbox: _Outbox) -> list[QueuedMessage]:
    """Empty the writer queue without sending, keeping order."""
    messages = []
    while True:
        try:
            message, _ = outbox.get_nowait()
        except asyncio.QueueEmpty:
            return messages
        outbox.task_done()
        messages.append(message)
