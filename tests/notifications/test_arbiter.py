"""Tests for NotificationArbiter."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pulsewire.core.config import ArbiterConfig
from pulsewire.core.scheduler import ManualScheduler
from pulsewire.core.types import NotificationSource
from pulsewire.notifications.arbiter import NotificationArbiter
from pulsewire.notifications.types import (
    CallbackListener,
    DisplayedNotification,
    DisplayOptions,
    NotificationEnvelope,
    NotificationKind,
    Priority,
)


def envelope(
    notification_id: str | None = "X",
    kind: NotificationKind = NotificationKind.MESSAGE,
    title: str = "Alice",
) -> NotificationEnvelope:
    return NotificationEnvelope(id=notification_id, type=kind.value, title=title, body="hi")


class Screen:
    """Listener recording what the UI would show."""

    def __init__(self) -> None:
        self.received: list[NotificationEnvelope] = []
        self.displayed: list[DisplayedNotification] = []
        self.hidden: list[str] = []

    def on_notification_received(self, envelope: NotificationEnvelope) -> None:
        self.received.append(envelope)

    def on_notification_displayed(self, notification: DisplayedNotification) -> None:
        self.displayed.append(notification)

    def on_notification_hidden(self, notification_id: str) -> None:
        self.hidden.append(notification_id)


class TestArbitration:
    """Tests for websocket/push arbitration."""

    @pytest.fixture
    def scheduler(self) -> ManualScheduler:
        """Virtual clock."""
        return ManualScheduler()

    @pytest.fixture
    def screen(self) -> Screen:
        """Recording listener."""
        return Screen()

    @pytest.fixture
    def arbiter(self, scheduler: ManualScheduler, screen: Screen) -> NotificationArbiter:
        """Arbiter with a 5s dedup window and 1s priority delay."""
        arbiter = NotificationArbiter(
            ArbiterConfig(dedup_window=5.0, priority_delay=1.0), scheduler=scheduler
        )
        arbiter.add_listener(screen)
        return arbiter

    def test_websocket_shown_immediately(
        self, arbiter: NotificationArbiter, screen: Screen
    ) -> None:
        """A websocket delivery is displayed at once with high priority."""
        arbiter.handle_websocket_notification(envelope())

        assert [n.id for n in screen.displayed] == ["X"]
        shown = screen.displayed[0]
        assert shown.envelope.source is NotificationSource.WEBSOCKET
        assert shown.options.priority is Priority.HIGH
        assert screen.received[0].id == "X"

    def test_push_held_for_priority_delay(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """A push delivery is shown only after the priority delay."""
        arbiter.handle_push_notification(envelope())

        assert screen.displayed == []
        assert arbiter.get_stats()["pending_count"] == 1

        scheduler.advance(1.0)

        assert [n.envelope.source for n in screen.displayed] == [NotificationSource.PUSH]
        assert screen.displayed[0].shown_at == 1.0
        assert arbiter.get_stats()["pending_count"] == 0

    def test_websocket_preempts_pending_push(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Push at t=0 then websocket at t=0.5 shows once, from websocket, at 0.5."""
        arbiter.handle_push_notification(envelope())
        scheduler.advance(0.5)
        arbiter.handle_websocket_notification(envelope())

        assert len(screen.displayed) == 1
        assert screen.displayed[0].envelope.source is NotificationSource.WEBSOCKET
        assert screen.displayed[0].shown_at == 0.5

        scheduler.advance(10.0)

        assert len(screen.displayed) == 1
        assert arbiter.get_stats()["pending_count"] == 0

    def test_push_after_websocket_discarded(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """A push arriving after the websocket delivery is a duplicate."""
        arbiter.handle_websocket_notification(envelope())
        scheduler.advance(0.5)
        arbiter.handle_push_notification(envelope())
        scheduler.advance(2.0)

        assert len(screen.displayed) == 1
        assert screen.displayed[0].envelope.source is NotificationSource.WEBSOCKET

    def test_second_push_discarded(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Two pushes with the same id show only the first."""
        first = envelope(title="first")
        arbiter.handle_push_notification(first)
        scheduler.advance(0.2)
        arbiter.handle_push_notification(envelope(title="second"))
        scheduler.advance(3.0)

        assert [n.envelope.title for n in screen.displayed] == ["first"]

    def test_push_after_display_discarded(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """A push arriving after the first push was shown is discarded."""
        arbiter.handle_push_notification(envelope())
        scheduler.advance(1.5)
        arbiter.handle_push_notification(envelope())
        scheduler.advance(1.5)

        assert len(screen.displayed) == 1

    def test_late_websocket_upgrades_shown_push(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """A websocket delivery after the push was shown is not shown again."""
        arbiter.handle_push_notification(envelope())
        scheduler.advance(1.0)
        arbiter.handle_websocket_notification(envelope())

        assert len(screen.displayed) == 1
        [current] = arbiter.get_displayed_notifications()
        assert current.envelope.source is NotificationSource.WEBSOCKET

    def test_duplicate_websocket_discarded(
        self, arbiter: NotificationArbiter, screen: Screen
    ) -> None:
        """The same websocket notification twice is shown once."""
        arbiter.handle_websocket_notification(envelope())
        arbiter.handle_websocket_notification(envelope())

        assert len(screen.displayed) == 1

    def test_distinct_ids_independent(
        self, arbiter: NotificationArbiter, screen: Screen
    ) -> None:
        """Different ids never suppress each other."""
        arbiter.handle_websocket_notification(envelope("A"))
        arbiter.handle_websocket_notification(envelope("B"))

        assert [n.id for n in screen.displayed] == ["A", "B"]

    def test_shown_again_after_dedup_window(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Once the window has elapsed the id counts as new."""
        arbiter.handle_websocket_notification(envelope())
        scheduler.advance(5.0)
        arbiter.handle_websocket_notification(envelope())

        assert len(screen.displayed) == 2

    def test_dismissed_duplicate_stays_suppressed(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Hiding a notification does not let a duplicate in during the window."""
        arbiter.handle_websocket_notification(envelope())
        arbiter.hide_notification("X")
        scheduler.advance(1.0)
        arbiter.handle_push_notification(envelope())
        scheduler.advance(2.0)

        assert len(screen.displayed) == 1

    def test_missing_id_always_shown(
        self, arbiter: NotificationArbiter, screen: Screen
    ) -> None:
        """Envelopes without id cannot be deduplicated and are shown."""
        arbiter.handle_websocket_notification(envelope(None))
        arbiter.handle_websocket_notification(envelope(None))

        assert len(screen.displayed) == 2
        assert screen.displayed[0].id != screen.displayed[1].id
        assert arbiter.get_stats()["history_count"] == 0

    def test_missing_id_push_not_held(
        self, arbiter: NotificationArbiter, screen: Screen
    ) -> None:
        """A push without id is shown right away."""
        arbiter.handle_push_notification(envelope(None))

        assert len(screen.displayed) == 1

    def test_local_notification(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Local notifications show immediately with their own options."""
        options = DisplayOptions(auto_hide=False, priority=Priority.LOW)
        arbiter.handle_local_notification(envelope("L"), options)
        scheduler.advance(60.0)

        [shown] = screen.displayed
        assert shown.envelope.source is NotificationSource.LOCAL
        assert shown.options is options
        assert screen.hidden == []

    def test_hidden_from_app_still_deduplicated(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """show_in_app=False announces the notification without displaying it."""
        arbiter.handle_local_notification(envelope("L"), DisplayOptions(show_in_app=False))

        assert [e.id for e in screen.received] == ["L"]
        assert screen.displayed == []
        assert arbiter.get_displayed_notifications() == []
        assert scheduler.pending == 0

        arbiter.handle_websocket_notification(envelope("L"))
        assert screen.displayed == []
        assert arbiter.get_stats()["history_count"] == 1


class TestDisplayLifecycle:
    """Tests for hiding, auto-hide, stats and cleanup."""

    @pytest.fixture
    def scheduler(self) -> ManualScheduler:
        """Virtual clock."""
        return ManualScheduler()

    @pytest.fixture
    def screen(self) -> Screen:
        """Recording listener."""
        return Screen()

    @pytest.fixture
    def arbiter(self, scheduler: ManualScheduler, screen: Screen) -> NotificationArbiter:
        """Arbiter with default settings."""
        arbiter = NotificationArbiter(scheduler=scheduler)
        arbiter.add_listener(screen)
        return arbiter

    def test_hide_idempotent(self, arbiter: NotificationArbiter, screen: Screen) -> None:
        """Hiding twice behaves like hiding once."""
        arbiter.handle_websocket_notification(envelope())

        arbiter.hide_notification("X")
        arbiter.hide_notification("X")

        assert screen.hidden == ["X"]
        assert arbiter.get_displayed_notifications() == []

    def test_hide_unknown_id(self, arbiter: NotificationArbiter, screen: Screen) -> None:
        """Hiding an id never shown is a no-op."""
        arbiter.hide_notification("nope")
        assert screen.hidden == []

    def test_hide_cancels_pending(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Hiding a pending push prevents it from being shown."""
        arbiter.handle_push_notification(envelope())
        arbiter.hide_notification("X")
        scheduler.advance(5.0)

        assert screen.displayed == []
        assert scheduler.pending == 0

    def test_auto_hide(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Notifications hide themselves after their hide delay."""
        arbiter.handle_websocket_notification(envelope())

        scheduler.advance(4.0)
        assert screen.hidden == []
        scheduler.advance(1.0)
        assert screen.hidden == ["X"]

    def test_game_invite_never_auto_hides(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Game invites stay until dismissed."""
        arbiter.handle_websocket_notification(envelope("G", NotificationKind.GAME_INVITE))
        scheduler.advance(60.0)

        assert screen.hidden == []
        assert arbiter.is_displayed("G")

    def test_push_display_options(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """Push notifications request a system notification."""
        arbiter.handle_push_notification(envelope())
        scheduler.advance(1.0)

        options = screen.displayed[0].options
        assert options.show_system_push is True
        assert options.hide_delay == 8.0

    def test_stats(self, arbiter: NotificationArbiter) -> None:
        """get_stats() reports counts and windows."""
        arbiter.handle_websocket_notification(envelope("A"))
        arbiter.handle_push_notification(envelope("B"))

        assert arbiter.get_stats() == {
            "displayed_count": 1,
            "pending_count": 1,
            "history_count": 2,
            "dedup_window": 5.0,
            "priority_delay": 1.0,
        }
        # No side effects
        assert arbiter.get_stats()["pending_count"] == 1

    def test_displayed_list_is_a_copy(self, arbiter: NotificationArbiter) -> None:
        """Mutating the returned list does not affect the arbiter."""
        arbiter.handle_websocket_notification(envelope())
        arbiter.get_displayed_notifications().clear()
        assert arbiter.is_displayed("X")

    def test_cleanup(self, arbiter: NotificationArbiter, scheduler: ManualScheduler) -> None:
        """cleanup() evicts history older than twice the window."""
        arbiter.handle_websocket_notification(envelope("old"))
        scheduler.advance(8.0)
        arbiter.handle_websocket_notification(envelope("new"))
        scheduler.advance(3.0)

        assert arbiter.cleanup() == 1
        assert arbiter.get_stats()["history_count"] == 1

    def test_periodic_cleanup(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler
    ) -> None:
        """start_cleanup() runs cleanup on an interval until stopped."""
        arbiter.start_cleanup()
        arbiter.handle_websocket_notification(envelope())
        scheduler.advance(30.0)

        assert arbiter.get_stats()["history_count"] == 0

        arbiter.stop_cleanup()
        arbiter.handle_websocket_notification(envelope("Y"))
        scheduler.advance(100.0)
        assert arbiter.get_stats()["history_count"] == 1

    def test_distinct_ids_kept_until_cleanup(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler
    ) -> None:
        """Without cleanup, expired ids never seen again stay in history."""
        for n in range(3):
            arbiter.handle_websocket_notification(envelope(f"id-{n}"))
            scheduler.advance(20.0)

        assert arbiter.get_stats()["history_count"] == 3
        assert arbiter.cleanup() == 3

    def test_reset(
        self, arbiter: NotificationArbiter, scheduler: ManualScheduler, screen: Screen
    ) -> None:
        """reset() hides everything, cancels timers and forgets history."""
        arbiter.handle_websocket_notification(envelope("A"))
        arbiter.handle_push_notification(envelope("B"))

        arbiter.reset()
        scheduler.advance(10.0)

        assert screen.hidden == ["A"]
        assert [n.id for n in screen.displayed] == ["A"]
        assert arbiter.get_stats()["history_count"] == 0
        assert scheduler.pending == 0

        arbiter.handle_websocket_notification(envelope("A"))
        assert len(screen.displayed) == 2


class TestListeners:
    """Tests for listener registration."""

    def test_rejects_non_listener(self) -> None:
        """Objects without the listener methods are rejected."""
        arbiter = NotificationArbiter(scheduler=ManualScheduler())
        with pytest.raises(TypeError):
            arbiter.add_listener(object())  # type: ignore[arg-type]

    def test_raising_listener_isolated(self) -> None:
        """A failing listener does not stop the others."""
        arbiter = NotificationArbiter(scheduler=ManualScheduler())
        on_displayed = MagicMock()
        arbiter.add_listener(CallbackListener(on_displayed=MagicMock(side_effect=RuntimeError)))
        arbiter.add_listener(CallbackListener(on_displayed=on_displayed))

        arbiter.handle_websocket_notification(envelope())

        on_displayed.assert_called_once()

    def test_remove_listener(self) -> None:
        """Removed listeners are not notified."""
        arbiter = NotificationArbiter(scheduler=ManualScheduler())
        on_displayed = MagicMock()
        listener = CallbackListener(on_displayed=on_displayed)
        arbiter.add_listener(listener)
        arbiter.remove_listener(listener)

        arbiter.handle_websocket_notification(envelope())

        on_displayed.assert_not_called()
