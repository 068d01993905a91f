from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from enum import Enum
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError

from editguard.core.clock import utcnow
from editguard.core.config import settings
from editguard.core.flow_logging import flow_info
from editguard.schemas.edit_session import EditSessionData
from editguard.services.change_feed import ChangeFeed
from editguard.services.presence_store import PresenceStore

logger = logging.getLogger(__name__)


class PresenceState(str, Enum):
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"


class HeartbeatLoop:
    """Daemon thread calling `tick` every `interval` seconds until stopped."""

    def __init__(self, interval: float, tick: Callable[[], object], *, name: str = "presence-heartbeat"):
        self.interval = max(0.01, float(interval))
        self.tick = tick
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except Exception as exc:
                logger.warning("presence_heartbeat_tick_failed error=%s", exc)

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)


class PresenceTracker:
    """
    Advertises "user X is editing resource Y" and reports other editors.

    One tracker belongs to one editing client. Presence is best-effort:
    store failures are logged and never raised to the caller.
    """

    def __init__(
        self,
        store: PresenceStore,
        user_id: str | None,
        *,
        feed: ChangeFeed | None = None,
        heartbeat_seconds: float | None = None,
        stale_seconds: int | None = None,
        hidden_timeout_seconds: float | None = None,
        enabled: bool | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.user_id = (user_id or "").strip() or None
        self.feed = feed if feed is not None else store.feed
        self.heartbeat_seconds = (
            heartbeat_seconds if heartbeat_seconds is not None else settings.PRESENCE_HEARTBEAT_SECONDS
        )
        self.stale_seconds = stale_seconds if stale_seconds is not None else settings.PRESENCE_STALE_SECONDS
        self.hidden_timeout_seconds = (
            hidden_timeout_seconds
            if hidden_timeout_seconds is not None
            else settings.PRESENCE_HIDDEN_TIMEOUT_SECONDS
        )
        self.enabled = settings.PRESENCE_ENABLED if enabled is None else enabled
        self.clock = clock

        self._lock = threading.RLock()
        self._state = PresenceState.UNREGISTERED
        self._target: tuple[str, str] | None = None
        self._visible = True
        self._hidden_since: datetime | None = None
        self._loop: HeartbeatLoop | None = None

    @property
    def state(self) -> PresenceState:
        return self._state

    @property
    def target(self) -> tuple[str, str] | None:
        return self._target

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def heartbeats_running(self) -> bool:
        return self._loop is not None and self._loop.running

    def stale_cutoff(self) -> datetime:
        return self.clock() - timedelta(seconds=self.stale_seconds)

    def register(self, resource_type: str, resource_id: str) -> bool:
        if not self.enabled or not self.user_id:
            return False
        with self._lock:
            previous = self._target
            if previous is not None and previous != (resource_type, resource_id):
                self._delete(previous)
            self._target = (resource_type, resource_id)
            self._state = PresenceState.REGISTERING
            try:
                self.store.upsert(
                    user_id=self.user_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    now=self.clock(),
                )
            except SQLAlchemyError as exc:
                self._state = PresenceState.UNREGISTERED
                logger.warning(
                    "presence_register_failed user_id=%s resource_type=%s resource_id=%s error=%s",
                    self.user_id,
                    resource_type,
                    resource_id,
                    exc,
                )
                return False
            self._state = PresenceState.REGISTERED
        flow_info(
            logger,
            "presence_registered user_id=%s resource_type=%s resource_id=%s",
            self.user_id,
            resource_type,
            resource_id,
            category="presence",
        )
        return True

    def resume(self, resource_type: str, resource_id: str) -> bool:
        """Adopt a session registered earlier (e.g. by a previous HTTP request) and heartbeat it."""
        if not self.enabled or not self.user_id:
            return False
        with self._lock:
            self._target = (resource_type, resource_id)
            self._state = PresenceState.REGISTERED
            return self.heartbeat()

    def heartbeat(self) -> bool:
        with self._lock:
            target = self._target
            if target is None or not self.enabled or not self.user_id:
                return False
            if not self._visible:
                self._expire_hidden(target)
                return False
            if self._state != PresenceState.REGISTERED:
                return self.register(*target)
            resource_type, resource_id = target
            try:
                touched = self.store.touch(
                    user_id=self.user_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    now=self.clock(),
                )
            except SQLAlchemyError as exc:
                logger.warning(
                    "presence_heartbeat_failed user_id=%s resource_type=%s resource_id=%s error=%s",
                    self.user_id,
                    resource_type,
                    resource_id,
                    exc,
                )
                return False
            if not touched:
                # Row was purged underneath us; re-create it.
                return self.register(resource_type, resource_id)
            return True

    def _expire_hidden(self, target: tuple[str, str]) -> None:
        if self._state != PresenceState.REGISTERED or self._hidden_since is None:
            return
        if self.clock() - self._hidden_since < timedelta(seconds=self.hidden_timeout_seconds):
            return
        # Target is kept so regaining visibility re-registers.
        self._delete(target)
        self._state = PresenceState.UNREGISTERED
        flow_info(
            logger,
            "presence_hidden_timeout user_id=%s resource_type=%s resource_id=%s",
            self.user_id,
            target[0],
            target[1],
            category="presence",
        )

    def set_visible(self, visible: bool) -> None:
        with self._lock:
            was_visible = self._visible
            self._visible = bool(visible)
            if not self._visible and was_visible:
                self._hidden_since = self.clock()
            elif self._visible:
                self._hidden_since = None
        if self._visible and not was_visible:
            self.heartbeat()

    def start_heartbeats(self) -> None:
        with self._lock:
            if self._loop is None:
                self._loop = HeartbeatLoop(self.heartbeat_seconds, self.heartbeat)
            self._loop.start()

    def stop_heartbeats(self) -> None:
        with self._lock:
            loop, self._loop = self._loop, None
        if loop is not None:
            loop.stop()

    def _delete(self, target: tuple[str, str]) -> None:
        resource_type, resource_id = target
        try:
            self.store.delete(
                user_id=self.user_id,
                resource_type=resource_type,
                resource_id=resource_id,
            )
        except SQLAlchemyError as exc:
            logger.warning(
                "presence_unregister_failed user_id=%s resource_type=%s resource_id=%s error=%s",
                self.user_id,
                resource_type,
                resource_id,
                exc,
            )

    def unregister(self) -> None:
        self.stop_heartbeats()
        with self._lock:
            target, self._target = self._target, None
            self._state = PresenceState.UNREGISTERED
            if target is None or not self.user_id:
                return
            self._delete(target)
        flow_info(
            logger,
            "presence_unregistered user_id=%s resource_type=%s resource_id=%s",
            self.user_id,
            target[0],
            target[1],
            category="presence",
        )

    def list_active(self, resource_type: str, resource_id: str) -> list[EditSessionData]:
        try:
            sessions = self.store.query_active(resource_type, resource_id, self.stale_cutoff())
        except SQLAlchemyError as exc:
            logger.warning(
                "presence_list_failed resource_type=%s resource_id=%s error=%s",
                resource_type,
                resource_id,
                exc,
            )
            return []
        return [session for session in sessions if session.user_id != self.user_id]

    def watch_active(
        self,
        resource_type: str,
        resource_id: str,
        on_update: Callable[[list[EditSessionData]], None] | None = None,
    ) -> "ActiveEditorsView":
        return ActiveEditorsView(self, resource_type, resource_id, on_update=on_update)

    def __enter__(self) -> "PresenceTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unregister()


class ActiveEditorsView:
    """
    Live list of other editors on one resource.

    Refreshes whenever the change feed reports a presence write for the
    resource. Iteration re-applies the staleness cutoff, so editors whose
    heartbeats stopped drop out even without a new notification.
    """

    def __init__(
        self,
        tracker: PresenceTracker,
        resource_type: str,
        resource_id: str,
        *,
        on_update: Callable[[list[EditSessionData]], None] | None = None,
    ):
        self.tracker = tracker
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.on_update = on_update
        self._lock = threading.Lock()
        self._sessions: list[EditSessionData] = []
        self._unsubscribe = None
        if tracker.feed is not None:
            self._unsubscribe = tracker.feed.subscribe(resource_type, resource_id, self._on_change)
        self.refresh()

    def _on_change(self, resource_type: str, resource_id: str) -> None:
        self.refresh()

    def refresh(self) -> list[EditSessionData]:
        sessions = self.tracker.list_active(self.resource_type, self.resource_id)
        with self._lock:
            self._sessions = sessions
        if self.on_update is not None:
            self.on_update(list(sessions))
        return sessions

    @property
    def sessions(self) -> list[EditSessionData]:
        cutoff = self.tracker.stale_cutoff()
        with self._lock:
            return [s for s in self._sessions if s.last_heartbeat > cutoff]

    def __iter__(self) -> Iterator[EditSessionData]:
        return iter(self.sessions)

    def __len__(self) -> int:
        return len(self.sessions)

    @property
    def closed(self) -> bool:
        return self._unsubscribe is None

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def __enter__(self) -> "ActiveEditorsView":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
