"""User-visible notification stream (warnings and errors)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True, slots=True)
class Notification:
    level: NotificationLevel
    message: str


class NotificationChannel:
    """Collects notifications for the presentation layer to pick up."""

    def __init__(self) -> None:
        self._pending: list[Notification] = []
        self._subscribers: list[Callable[[Notification], None]] = []

    def subscribe(self, callback: Callable[[Notification], None]) -> None:
        self._subscribers.append(callback)

    def add(self, level: NotificationLevel, message: str) -> Notification:
        note = Notification(level=level, message=message)
        if level is NotificationLevel.DANGER:
            logger.error("%s", message)
        else:
            logger.warning("%s", message)
        self._pending.append(note)
        for callback in self._subscribers:
            callback(note)
        return note

    def warning(self, message: str) -> Notification:
        return self.add(NotificationLevel.WARNING, message)

    def danger(self, message: str) -> Notification:
        return self.add(NotificationLevel.DANGER, message)

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    def drain(self) -> list[Notification]:
        """Return and clear pending notifications."""
        out, self._pending = self._pending, []
        return out
