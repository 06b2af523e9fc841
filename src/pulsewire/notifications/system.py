"""Cross-platform system notifications.

This module provides:
- send_notification: Native OS notification (Windows toast, macOS
  notification center, Linux notify-send)
- SystemNotifier: Arbiter listener rendering displayed notifications that
  ask for a system notification
"""

from __future__ import annotations

import asyncio
import logging
import platform
import subprocess
from dataclasses import dataclass

from pulsewire.notifications.types import (
    DisplayedNotification,
    NotificationEnvelope,
    Priority,
)

logger = logging.getLogger(__name__)

APP_NAME = "pulsewire"


@dataclass
class SystemNotification:
    """A notification to hand to the OS."""

    title: str
    message: str
    priority: Priority = Priority.NORMAL


def _escape_xml(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _notify_windows(notification: SystemNotification) -> bool:
    """Send notification on Windows using PowerShell toast.

    Args:
        notification: The notification to send.

    Returns:
        True if notification was sent successfully.
    """
    title = _escape_xml(notification.title)
    message = _escape_xml(notification.message)
    ps_script = f'''
    [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
    [Windows.Data.Xml.Dom.XmlDocument, Windows.Data.Xml.Dom.XmlDocument, ContentType = WindowsRuntime] | Out-Null

    $template = @"
    <toast>
        <visual>
            <binding template="ToastText02">
                <text id="1">{title}</text>
                <text id="2">{message}</text>
            </binding>
        </visual>
    </toast>
"@

    $xml = New-Object Windows.Data.Xml.Dom.XmlDocument
    $xml.LoadXml($template)
    $toast = New-Object Windows.UI.Notifications.ToastNotification $xml
    [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("{APP_NAME}").Show($toast)
    '''
    try:
        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=True,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("Windows notification failed: %s", e)
        return False


def _notify_macos(notification: SystemNotification) -> bool:
    """Send notification on macOS using osascript."""
    title = notification.title.replace("\\", "\\\\").replace('"', '\\"')
    message = notification.message.replace("\\", "\\\\").replace('"', '\\"')
    script = f'display notification "{message}" with title "{title}"'
    try:
        subprocess.run(["osascript", "-e", script], capture_output=True, check=True)
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("macOS notification failed: %s", e)
        return False


def _notify_linux(notification: SystemNotification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency_map = {
        Priority.HIGH: "critical",
        Priority.NORMAL: "normal",
        Priority.LOW: "low",
    }
    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency_map[notification.priority],
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("Linux notification failed: %s", e)
        return False


def send_notification(notification: SystemNotification) -> bool:
    """Send a system notification.

    Uses native OS notification system:
    - Windows: Toast notification via PowerShell
    - macOS: Notification Center via osascript
    - Linux: notify-send

    Args:
        notification: The notification to send.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()

    if system == "Windows":
        return _notify_windows(notification)
    elif system == "Darwin":
        return _notify_macos(notification)
    elif system == "Linux":
        return _notify_linux(notification)
    else:
        logger.warning("Notifications not supported on %s", system)
        return False


class SystemNotifier:
    """NotificationListener showing OS notifications.

    Only notifications whose display options set ``show_system_push`` are
    rendered (by default, push-sourced ones). Inside a running event loop
    the notifier subprocess runs in the default executor so the loop keeps
    serving the socket; without a loop it runs inline.

    Args:
        force: Render every displayed notification regardless of options.
    """

    def __init__(self, force: bool = False) -> None:
        self.force = force
        self.sent = 0
        self._in_flight: set[asyncio.Future[bool]] = set()

    def on_notification_received(self, envelope: NotificationEnvelope) -> None:
        pass

    def on_notification_displayed(self, notification: DisplayedNotification) -> None:
        if not (self.force or notification.options.show_system_push):
            return
        system_notification = SystemNotification(
            title=notification.envelope.title,
            message=notification.envelope.body,
            priority=notification.options.priority,
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if send_notification(system_notification):
                self.sent += 1
            return

        future = loop.run_in_executor(None, send_notification, system_notification)
        self._in_flight.add(future)
        future.add_done_callback(self._on_delivered)

    def on_notification_hidden(self, notification_id: str) -> None:
        # OS notifications are dismissed by the OS
        pass

    async def drain(self) -> None:
        """Wait for notifications still being handed to the OS."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    def _on_delivered(self, future: asyncio.Future[bool]) -> None:
        self._in_flight.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("System notification failed: %s", error)
        elif future.result():
            self.sent += 1
