"""Timer scheduling for state transitions.

This module provides:
- Scheduler: Protocol for a clock with cancellable one-shot timers
- AsyncioScheduler: Default implementation on the running event loop
- ManualScheduler: Virtual clock advanced explicitly (deterministic tests)

Backoff, heartbeat, heartbeat-timeout, priority-delay and auto-hide timers
all go through a Scheduler, so no component calls ``asyncio.sleep`` or
``loop.call_later`` directly.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Clock plus one-shot timers, all on a single thread."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    The loop is resolved lazily so the scheduler can be built before the
    loop is running (e.g. in a CLI composition root).
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(delay, 0.0), callback)


class ManualTimer:
    """Timer owned by a ManualScheduler."""

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "armed"
        return f"ManualTimer(when={self.when:.3f}, {state})"


class ManualScheduler:
    """Virtual clock; timers fire only inside ``advance``.

    Usage:
        scheduler = ManualScheduler()
        arbiter = NotificationArbiter(scheduler=scheduler)
        arbiter.handle_push_notification(envelope)
        scheduler.advance(1.0)  # fires the priority-delay timer
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._seq = itertools.count()
        self._timers: list[tuple[float, int, ManualTimer]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._timers, (timer.when, next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due timers in deadline order.

        Timers scheduled by a firing callback run in the same call if they
        fall within the new time.

        Args:
            seconds: Amount of virtual time to advance.

        Returns:
            Number of callbacks fired.
        """
        target = self._now + seconds
        fired = 0
        while self._timers and self._timers[0][0] <= target:
            when, _, timer = heapq.heappop(self._timers)
            if timer.cancelled():
                continue
            self._now = when
            timer.callback()
            fired += 1
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        """Number of armed timers."""
        return sum(1 for _, _, timer in self._timers if not timer.cancelled())
