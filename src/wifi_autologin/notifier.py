from __future__ import annotations

import logging
import shutil
import subprocess
from enum import Enum
from typing import Protocol


logger = logging.getLogger(__name__)

APP_TITLE = "WiFi AutoLogin"


class Notification(str, Enum):
    LOCKED = "locked"
    LOGIN_SUCCEEDED = "login_succeeded"


MESSAGES = {
    Notification.LOCKED: "Auto-login locked: save portal credentials to enable auto-login.",
    Notification.LOGIN_SUCCEEDED: "Auto-login succeeded - internet is reachable.",
}


class Notifier(Protocol):
    def notify(self, kind: Notification, message: str) -> None: ...


class LoggingNotifier:
    def notify(self, kind: Notification, message: str) -> None:
        logger.info("[%s] %s", kind.value, message)


class DesktopNotifier:
    """
    Desktop popups via `notify-send` (libnotify). Falls back to the log when it is not installed.

    `notify` is called from the event loop, so the command is started and never waited on; finished
    processes are reaped on the next call.
    """

    def __init__(self, *, command: str = "notify-send") -> None:
        self._binary = shutil.which(command)
        self._fallback = LoggingNotifier()
        self._running: list[subprocess.Popen] = []

    def notify(self, kind: Notification, message: str) -> None:
        self._fallback.notify(kind, message)
        if not self._binary:
            return
        self._running = [p for p in self._running if p.poll() is None]
        try:
            proc = subprocess.Popen(
                [self._binary, "--app-name", APP_TITLE, APP_TITLE, message],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Desktop notification failed: %s", e)
            return
        self._running.append(proc)
