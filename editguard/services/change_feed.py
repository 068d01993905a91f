from __future__ import annotations

from collections.abc import Callable
import logging
import threading

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, str], None]
Unsubscribe = Callable[[], None]


class ChangeFeed:
    """
    In-process push notifications for presence changes.

    Subscribers are keyed by (resource_type, resource_id); a subscription
    with resource_id=None receives every change for that resource type.
    Callbacks run synchronously on the publishing thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[tuple[str, str | None], dict[int, ChangeCallback]] = {}
        self._next_token = 0

    def subscribe(
        self,
        resource_type: str,
        resource_id: str | None,
        callback: ChangeCallback,
    ) -> Unsubscribe:
        key = (resource_type, resource_id)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers.setdefault(key, {})[token] = callback

        def _unsubscribe() -> None:
            with self._lock:
                bucket = self._subscribers.get(key)
                if bucket is None:
                    return
                bucket.pop(token, None)
                if not bucket:
                    self._subscribers.pop(key, None)

        return _unsubscribe

    def subscriber_count(self, resource_type: str, resource_id: str | None = None) -> int:
        with self._lock:
            return len(self._subscribers.get((resource_type, resource_id), {}))

    def publish(self, resource_type: str, resource_id: str) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get((resource_type, resource_id), {}).values())
            callbacks += list(self._subscribers.get((resource_type, None), {}).values())
        for callback in callbacks:
            try:
                callback(resource_type, resource_id)
            except Exception as exc:
                logger.warning(
                    "change_feed_subscriber_failed resource_type=%s resource_id=%s error=%s",
                    resource_type,
                    resource_id,
                    exc,
                )
