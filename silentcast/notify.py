"""User-facing notifications, delivered through pluggable notifiers."""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum


class Level(IntEnum):
    """Kind of notification."""

    INFO = 0
    WARNING = 1
    ERROR = 2
    SUCCESS = 3


@dataclass
class Notification:
    """A notification to display."""

    title: str = ""
    message: str = ""
    level: Level = Level.INFO


class Notifier(ABC):
    """Something that can display notifications."""

    @abstractmethod
    def notify(self, notification: Notification) -> None:
        """Display a notification; raise on failure."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this notifier works on the current system."""


_RESET = "\033[0m"
_STYLED = {
    Level.INFO: ("ℹ️  INFO", "\033[36m"),
    Level.WARNING: ("⚠️  WARN", "\033[33m"),
    Level.ERROR: ("❌ ERROR", "\033[31m"),
    Level.SUCCESS: ("✅ SUCCESS", "\033[32m"),
}
_STYLED_DEFAULT = ("📢 NOTIFY", "")
_PLAIN = {
    Level.INFO: "[INFO]",
    Level.WARNING: "[WARN]",
    Level.ERROR: "[ERROR]",
    Level.SUCCESS: "[SUCCESS]",
}
_PLAIN_DEFAULT = "[NOTIFY]"


def _stderr_is_terminal() -> bool:
    try:
        return bool(sys.stderr.isatty())
    except (AttributeError, ValueError):
        return False


class ConsoleNotifier(Notifier):
    """Writes notifications to standard error, coloured on a terminal."""

    def notify(self, notification: Notification) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        if _stderr_is_terminal():
            prefix, color = _STYLED.get(notification.level, _STYLED_DEFAULT)
            reset = _RESET
        else:
            prefix = _PLAIN.get(notification.level, _PLAIN_DEFAULT)
            color = reset = ""

        title, message = notification.title, notification.message
        out = sys.stderr
        if title and message:
            out.write(f"{color}[{timestamp}] {prefix}{reset}: {title}{reset}\n")
            out.write(f"{color}        {message}{reset}\n")
        elif title:
            out.write(f"{color}[{timestamp}] {prefix}: {title}{reset}\n")
        else:
            out.write(f"{color}[{timestamp}] {prefix}: {message}{reset}\n")

    def is_available(self) -> bool:
        return True


class Manager:
    """Fans notifications out to every available notifier."""

    def __init__(self):
        self._notifiers: list[Notifier] = []
        self.add_notifier(ConsoleNotifier())

    @property
    def notifiers(self) -> tuple[Notifier, ...]:
        return tuple(self._notifiers)

    def add_notifier(self, notifier: Notifier | None) -> None:
        """Register a notifier if it is available."""
        if notifier is not None and notifier.is_available():
            self._notifiers.append(notifier)

    def notify(self, notification: Notification) -> None:
        """Send to all notifiers; re-raise the last failure after trying them all."""
        last_error: Exception | None = None
        for notifier in self._notifiers:
            try:
                notifier.notify(notification)
            except Exception as exc:  # keep delivering to the rest
                last_error = exc
        if last_error is not None:
            raise last_error

    def info(self, title: str, message: str) -> None:
        self.notify(Notification(title, message, Level.INFO))

    def warning(self, title: str, message: str) -> None:
        self.notify(Notification(title, message, Level.WARNING))

    def error(self, title: str, message: str) -> None:
        self.notify(Notification(title, message, Level.ERROR))

    def success(self, title: str, message: str) -> None:
        self.notify(Notification(title, message, Level.SUCCESS))