from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

from editguard.core.config import settings
from editguard.schemas.edit_session import EditSessionData
from editguard.services.optimistic_lock import OptimisticLock
from editguard.services.presence_tracker import PresenceTracker
from editguard.services.resource_store import ResourceStore

logger = logging.getLogger(__name__)


@dataclass
class SaveCheck:
    can_save: bool
    latest_data: dict[str, Any] | None = None


class ConcurrentEditCoordinator:
    """
    Re-validates a pending save against the live resource.

    Combines the optimistic lock (version check) with presence tracking
    (who else is editing). Presence is active only while editing a stored
    resource; new records skip conflict detection entirely.
    """

    def __init__(
        self,
        resource_store: ResourceStore,
        lock: OptimisticLock[dict[str, Any]],
        *,
        resource_type: str,
        resource_id: str | None,
        tracker: PresenceTracker | None = None,
        enabled: bool = True,
        on_refresh: Callable[[dict[str, Any]], None] | None = None,
        fail_open: bool | None = None,
    ):
        self.resource_store = resource_store
        self.lock = lock
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.tracker = tracker
        self.enabled = enabled
        self.on_refresh = on_refresh
        self.fail_open = settings.CONFLICT_CHECK_FAIL_OPEN if fail_open is None else fail_open

        self.is_editing = False
        self.show_conflict_dialog = False
        self.latest_server_data: dict[str, Any] | None = None

    @property
    def has_conflict(self) -> bool:
        return self.lock.has_conflict

    @property
    def presence_active(self) -> bool:
        return bool(self.enabled and self.is_editing and self.resource_id)

    def _sync_presence(self) -> None:
        if self.tracker is None:
            return
        if self.presence_active:
            if not self.tracker.enabled or not self.tracker.user_id:
                return
            self.tracker.register(self.resource_type, self.resource_id)
            self.tracker.start_heartbeats()
        else:
            self.tracker.unregister()

    def set_editing(self, is_editing: bool) -> None:
        self.is_editing = bool(is_editing)
        self._sync_presence()

    def bind(self, resource_id: str | None) -> None:
        """Point the coordinator at another record (e.g. after a create)."""
        if resource_id == self.resource_id:
            return
        if self.tracker is not None:
            self.tracker.unregister()
        self.resource_id = resource_id
        self._sync_presence()

    def other_editors(self) -> list[EditSessionData]:
        if self.tracker is None or not self.resource_id:
            return []
        return self.tracker.list_active(self.resource_type, self.resource_id)

    def check_before_save(self) -> SaveCheck:
        if not self.resource_id:
            return SaveCheck(can_save=True)

        try:
            latest = self.resource_store.fetch_by_id(self.resource_type, self.resource_id)
        except Exception as exc:
            logger.warning(
                "conflict_check_fetch_failed resource_type=%s resource_id=%s fail_open=%s error=%s",
                self.resource_type,
                self.resource_id,
                self.fail_open,
                exc,
            )
            return SaveCheck(can_save=self.fail_open)

        if self.lock.check_for_conflict(latest):
            self.latest_server_data = latest
            self.show_conflict_dialog = True
            return SaveCheck(can_save=False, latest_data=latest)

        return SaveCheck(can_save=True, latest_data=latest)

    def handle_keep_local(self) -> None:
        self.lock.resolve_with_local()
        self.show_conflict_dialog = False

    def handle_accept_server(self) -> dict[str, Any] | None:
        server_data = self.lock.resolve_with_server()
        self.show_conflict_dialog = False
        if server_data is not None:
            self.latest_server_data = server_data
            if self.on_refresh is not None:
                self.on_refresh(server_data)
        return server_data

    def close(self) -> None:
        self.is_editing = False
        self.show_conflict_dialog = False
        if self.tracker is not None:
            self.tracker.unregister()
        self.lock.reset()

    def __enter__(self) -> "ConcurrentEditCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
