"""Shared fixtures: an in-memory socket and a virtual clock."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from pulsewire.core.scheduler import ManualScheduler


class FakeTransport:
    """In-memory stand-in for a websockets ClientConnection.

    Frames pushed with ``feed`` are returned by ``recv``; frames written by
    the client are collected in ``sent``.
    """

    def __init__(self, url: str = "") -> None:
        self.url = url
        self.sent: list[str] = []
        self.closed = False
        self.fail_sends = False
        self._inbox: asyncio.Queue[str | bytes | BaseException] = asyncio.Queue()

    def feed(self, frame: str | bytes | dict[str, Any]) -> None:
        """Deliver a frame to the client (dicts are JSON-encoded)."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def drop(self, clean: bool = False) -> None:
        """Simulate the server closing the socket."""
        if clean:
            exc: BaseException = ConnectionClosedOK(Close(1000, ""), Close(1000, ""), rcvd_then_sent=True)
        else:
            exc = ConnectionClosedError(None, None)
        self._inbox.put_nowait(exc)

    @property
    def sent_frames(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]

    def sent_types(self) -> list[str]:
        return [frame["type"] for frame in self.sent_frames]

    async def send(self, message: str) -> None:
        if self.closed or self.fail_sends:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def recv(self) -> str | bytes:
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(ConnectionClosedOK(Close(code, reason), Close(code, reason)))


class FakeConnector:
    """Connector handing out FakeTransports, optionally failing.

    Attributes:
        calls: URLs passed to each connection attempt.
        transports: Sockets opened so far.
        failures: Number of upcoming attempts to fail with OSError.
        gate: When set, attempts wait on it before opening.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.transports: list[FakeTransport] = []
        self.failures = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeTransport:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise OSError("Connection refused")
        transport = FakeTransport(url)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual clock starting at t=0."""
    return ManualScheduler()


@pytest.fixture
def connector() -> FakeConnector:
    """Connector producing in-memory sockets."""
    return FakeConnector()


@pytest.fixture
def settle() -> Callable[[], Awaitable[None]]:
    """Let reader, writer and reconnect tasks run until idle."""

    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle
