from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Protocol

from editguard.core.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    level: str = "warning"
    created_at: object = field(default_factory=utcnow)


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    def notify(self, notification: Notification) -> None:
        logger.warning(
            "user_notification level=%s title=%s description=%s",
            notification.level,
            notification.title,
            notification.description,
        )


class CollectingNotificationSink:
    """Keeps notifications in memory until drained (tests, polling UIs)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self._items.append(notification)

    @property
    def notifications(self) -> list[Notification]:
        with self._lock:
            return list(self._items)

    def drain(self) -> list[Notification]:
        with self._lock:
            items, self._items = self._items, []
        return items
