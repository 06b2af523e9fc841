"""Notification deduplication and source arbitration.

This module provides:
- NotificationArbiter: Decides whether a notification delivered by the
  socket, by push or locally is shown, held back or suppressed

The same logical event (same id) can arrive from the live socket and from
the push service. The arbiter guarantees it is shown at most once per
dedup window:

    websocket ─┐
    push ──────┼──► NotificationArbiter ──display──► listeners (UI)
    local ─────┘           │
                    (push held for priority_delay;
                     a websocket delivery pre-empts it)

Dedup state is keyed by id and timed from first sight of that id on the
scheduler clock. Records older than the window are evicted lazily when the
id is looked up again, and in bulk by cleanup().
"""

from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

from pulsewire.core.config import ArbiterConfig
from pulsewire.core.scheduler import AsyncioScheduler
from pulsewire.core.types import NotificationSource
from pulsewire.notifications.types import (
    DEFAULT_DISPLAY_OPTIONS,
    DisplayedNotification,
    DisplayOptions,
    DisplayState,
    NotificationEnvelope,
    NotificationListener,
    PendingDisplay,
)

if TYPE_CHECKING:
    from pulsewire.core.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class NotificationArbiter:
    """Keyed dedup with a push priority delay.

    Usage:
        arbiter = NotificationArbiter(ArbiterConfig(priority_delay=1.0))
        arbiter.add_listener(ui)

        # From the socket (shown immediately)
        arbiter.handle_websocket_notification(envelope)
        # From the push service (shown after priority_delay unless the
        # socket delivers the same id first)
        arbiter.handle_push_notification(envelope)

        arbiter.hide_notification(envelope.id)

    Expired history is only evicted when its id shows up again. Long-lived
    owners must call start_cleanup() (or cleanup() on their own schedule),
    otherwise history grows with every distinct id.
    """

    def __init__(
        self,
        config: ArbiterConfig | None = None,
        scheduler: Scheduler | None = None,
        display_options: dict[NotificationSource, DisplayOptions] | None = None,
    ) -> None:
        """Initialize the arbiter.

        Args:
            config: Dedup window, priority delay and cleanup interval.
            scheduler: Clock and timers (defaults to the running loop).
            display_options: Presentation per source, merged over defaults.
        """
        self._config = config or ArbiterConfig()
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._display_options = {**DEFAULT_DISPLAY_OPTIONS, **(display_options or {})}

        self._listeners: list[NotificationListener] = []
        self._displayed: dict[str, DisplayedNotification] = {}
        self._pending: dict[str, PendingDisplay] = {}
        self._history: dict[str, float] = {}  # id -> first sight
        self._hide_timers: dict[str, TimerHandle] = {}
        self._cleanup_timer: TimerHandle | None = None
        self._cleanup_interval = self._config.cleanup_interval

    @property
    def config(self) -> ArbiterConfig:
        return self._config

    # =========================================================================
    # Ingress
    # =========================================================================

    def handle_websocket_notification(self, envelope: NotificationEnvelope) -> None:
        """Handle a notification delivered by the live socket.

        Shown immediately; pre-empts a push delivery of the same id that is
        still waiting out its priority delay.
        """
        self._ingest(envelope, NotificationSource.WEBSOCKET)

    def handle_push_notification(self, envelope: NotificationEnvelope) -> None:
        """Handle a notification delivered by the push service.

        Held for the priority delay so the socket can deliver it first.
        """
        self._ingest(envelope, NotificationSource.PUSH)

    def handle_local_notification(
        self,
        envelope: NotificationEnvelope,
        options: DisplayOptions | None = None,
    ) -> None:
        """Handle a notification generated inside the app.

        Args:
            envelope: The notification.
            options: Presentation override for this notification.
        """
        self._ingest(envelope, NotificationSource.LOCAL, options)

    def _ingest(
        self,
        envelope: NotificationEnvelope,
        source: NotificationSource,
        options: DisplayOptions | None = None,
    ) -> None:
        envelope = dataclasses.replace(envelope, source=source, timestamp=time.time())
        logger.debug("%s notification received: %r", source.value, envelope)

        if not envelope.id:
            logger.warning("Notification without id cannot be deduplicated, showing: %r", envelope)
            self._show(f"anonymous-{uuid.uuid4().hex}", envelope, options)
            return

        notification_id = envelope.id
        self._expire(notification_id)

        pending = self._pending.get(notification_id)
        if pending is not None:
            if source is NotificationSource.WEBSOCKET:
                logger.info("Websocket delivery pre-empts pending push %s", notification_id)
                pending.suppress()
                del self._pending[notification_id]
                self._show(notification_id, envelope, options)
            else:
                logger.info(
                    "Duplicate %s notification blocked: %s (push pending)",
                    source.value,
                    notification_id,
                )
            return

        if notification_id in self._history:
            displayed = self._displayed.get(notification_id)
            if (
                displayed is not None
                and source is NotificationSource.WEBSOCKET
                and displayed.envelope.source is NotificationSource.PUSH
            ):
                # Keep the realtime payload without showing it a second time
                displayed.envelope = envelope
            logger.info("Duplicate %s notification blocked: %s", source.value, notification_id)
            return

        self._history[notification_id] = self._scheduler.now()
        if source is NotificationSource.PUSH:
            self._hold(notification_id, envelope, options)
        else:
            self._show(notification_id, envelope, options)

    # =========================================================================
    # Decisions
    # =========================================================================

    def _hold(
        self,
        notification_id: str,
        envelope: NotificationEnvelope,
        options: DisplayOptions | None,
    ) -> None:
        """Arm the priority-delay timer for a first-sighted push."""
        pending = PendingDisplay(envelope=envelope, scheduled_at=self._scheduler.now())
        pending.timer = self._scheduler.call_later(
            self._config.priority_delay,
            lambda: self._on_priority_delay_elapsed(notification_id, pending, options),
        )
        self._pending[notification_id] = pending
        logger.debug(
            "Holding push %s for %.1fs", notification_id, self._config.priority_delay
        )

    def _on_priority_delay_elapsed(
        self,
        notification_id: str,
        pending: PendingDisplay,
        options: DisplayOptions | None,
    ) -> None:
        if self._pending.get(notification_id) is not pending:
            return
        del self._pending[notification_id]
        pending.timer = None
        pending.state = DisplayState.SHOWN
        self._show(notification_id, pending.envelope, options)

    def _show(
        self,
        notification_id: str,
        envelope: NotificationEnvelope,
        options: DisplayOptions | None,
    ) -> None:
        options = options or self._display_options[envelope.source]
        self._cancel_hide_timer(notification_id)

        if not options.show_in_app:
            # Recorded for dedup and announced, but never on screen
            logger.info("Notification %s not shown in app", notification_id)
            self._notify("on_notification_received", envelope)
            return

        displayed = DisplayedNotification(
            id=notification_id,
            envelope=envelope,
            shown_at=self._scheduler.now(),
            options=options,
        )
        self._displayed[notification_id] = displayed
        logger.info(
            "Displaying %s notification %s (priority=%s): %s",
            envelope.source.value,
            notification_id,
            options.priority.value,
            envelope.title,
        )

        self._notify("on_notification_received", envelope)
        self._notify("on_notification_displayed", displayed)

        if options.auto_hide and options.hide_delay > 0 and not envelope.is_game_invite:
            self._hide_timers[notification_id] = self._scheduler.call_later(
                options.hide_delay, lambda: self._auto_hide(notification_id)
            )

    def _auto_hide(self, notification_id: str) -> None:
        self._hide_timers.pop(notification_id, None)
        self.hide_notification(notification_id)

    # =========================================================================
    # Public operations
    # =========================================================================

    def hide_notification(self, notification_id: str) -> None:
        """Hide a displayed notification and cancel a pending one. Idempotent.

        The dedup history is kept, so a late duplicate of a dismissed
        notification stays suppressed for the rest of the window.
        """
        self._cancel_hide_timer(notification_id)

        if self._displayed.pop(notification_id, None) is not None:
            logger.info("Notification hidden: %s", notification_id)
            self._notify("on_notification_hidden", notification_id)

        pending = self._pending.pop(notification_id, None)
        if pending is not None:
            pending.suppress()
            logger.debug("Cancelled pending notification: %s", notification_id)

    def get_displayed_notifications(self) -> list[DisplayedNotification]:
        """Get the notifications currently shown, oldest first."""
        return list(self._displayed.values())

    def get_pending_notifications(self) -> list[PendingDisplay]:
        """Get push notifications waiting out their priority delay."""
        return list(self._pending.values())

    def is_displayed(self, notification_id: str) -> bool:
        return notification_id in self._displayed

    def get_stats(self) -> dict[str, Any]:
        """Get arbiter statistics."""
        return {
            "displayed_count": len(self._displayed),
            "pending_count": len(self._pending),
            "history_count": len(self._history),
            "dedup_window": self._config.dedup_window,
            "priority_delay": self._config.priority_delay,
        }

    def cleanup(self) -> int:
        """Drop history records older than twice the dedup window.

        Returns:
            Number of records removed.
        """
        now = self._scheduler.now()
        horizon = self._config.dedup_window * 2
        expired = [
            notification_id
            for notification_id, first_seen in self._history.items()
            if now - first_seen > horizon and notification_id not in self._pending
        ]
        for notification_id in expired:
            del self._history[notification_id]

        if expired:
            logger.info("Cleaned up %d expired notification records", len(expired))
        return len(expired)

    def start_cleanup(self, interval: float | None = None) -> None:
        """Run cleanup() periodically until stop_cleanup().

        Args:
            interval: Seconds between runs (defaults to cleanup_interval).
        """
        self.stop_cleanup()
        self._cleanup_interval = interval or self._config.cleanup_interval
        self._cleanup_timer = self._scheduler.call_later(
            self._cleanup_interval, self._periodic_cleanup
        )

    def stop_cleanup(self) -> None:
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    def _periodic_cleanup(self) -> None:
        self._cleanup_timer = None
        self.cleanup()
        self.start_cleanup(self._cleanup_interval)

    def reset(self) -> None:
        """Forget everything (logout): cancel timers, hide all, clear history."""
        for pending in self._pending.values():
            pending.suppress()
        self._pending.clear()
        for timer in self._hide_timers.values():
            timer.cancel()
        self._hide_timers.clear()

        hidden = list(self._displayed)
        self._displayed.clear()
        self._history.clear()
        for notification_id in hidden:
            self._notify("on_notification_hidden", notification_id)
        logger.info("Notification state reset (%d hidden)", len(hidden))

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: NotificationListener) -> None:
        """Register an observer.

        Raises:
            TypeError: If the object does not implement NotificationListener.
        """
        if not isinstance(listener, NotificationListener):
            raise TypeError(f"{type(listener).__name__} does not implement NotificationListener")
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, method: str, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception:
                logger.exception("Error in notification listener %s", method)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _expire(self, notification_id: str) -> None:
        """Evict the records of an id first seen longer than the window ago."""
        first_seen = self._history.get(notification_id)
        if first_seen is None:
            return
        if self._scheduler.now() - first_seen < self._config.dedup_window:
            return

        del self._history[notification_id]
        # priority_delay <= dedup_window, so a pending entry here is stale
        pending = self._pending.pop(notification_id, None)
        if pending is not None:
            pending.suppress()
        logger.debug("Dedup window elapsed for %s", notification_id)

    def _cancel_hide_timer(self, notification_id: str) -> None:
        timer = self._hide_timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()
