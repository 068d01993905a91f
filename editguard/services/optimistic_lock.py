from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Generic, TypeVar

from editguard.core.clock import parse_instant
from editguard.core.flow_logging import flow_info
from editguard.services.notifications import LoggingNotificationSink, Notification, NotificationSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class LockState(Generic[T]):
    original_data: T | None = None
    original_updated_at: datetime | None = None
    has_conflict: bool = False
    conflict_data: T | None = None


def read_field(data: Any, field: str) -> Any:
    if data is None:
        return None
    if isinstance(data, Mapping):
        return data.get(field)
    return getattr(data, field, None)


class OptimisticLock(Generic[T]):
    """
    Lost-update detection for one editor by version-timestamp comparison.

    A server copy conflicts only when its timestamp is strictly newer than
    the baseline captured at edit start. Missing timestamps never conflict.
    """

    def __init__(
        self,
        resource_name: str,
        *,
        notifier: NotificationSink | None = None,
        timestamp_field: str = "updated_at",
    ):
        self.resource_name = resource_name
        self.notifier = notifier or LoggingNotificationSink()
        self.timestamp_field = timestamp_field
        self.state: LockState[T] = LockState()

    @property
    def has_conflict(self) -> bool:
        return self.state.has_conflict

    @property
    def conflict_data(self) -> T | None:
        return self.state.conflict_data

    @property
    def original_data(self) -> T | None:
        return self.state.original_data

    @property
    def original_updated_at(self) -> datetime | None:
        return self.state.original_updated_at

    def _timestamp(self, data: Any) -> datetime | None:
        return parse_instant(read_field(data, self.timestamp_field))

    def initialize(self, data: T) -> None:
        self.state = LockState(
            original_data=data,
            original_updated_at=self._timestamp(data),
        )

    def check_for_conflict(self, server_data: T) -> bool:
        baseline = self.state.original_updated_at
        server_ts = self._timestamp(server_data)
        if baseline is None or server_ts is None:
            return False
        if server_ts <= baseline:
            return False

        self.state.has_conflict = True
        self.state.conflict_data = server_data
        flow_info(
            logger,
            "optimistic_lock_conflict resource=%s baseline=%s server=%s",
            self.resource_name,
            baseline.isoformat(),
            server_ts.isoformat(),
            category="conflict",
        )
        self.notifier.notify(
            Notification(
                title=f"{self.resource_name} was modified",
                description=(
                    f"Someone else saved changes to this {self.resource_name} "
                    "while you were editing. Keep your changes or load theirs."
                ),
            )
        )
        return True

    def resolve_with_local(self) -> None:
        conflict = self.state.conflict_data
        if conflict is not None:
            server_ts = self._timestamp(conflict)
            if server_ts is not None:
                # The next save is checked against the version being overwritten.
                self.state.original_updated_at = server_ts
        self.state.has_conflict = False
        self.state.conflict_data = None

    def resolve_with_server(self) -> T | None:
        conflict = self.state.conflict_data
        if conflict is None:
            return None
        self.state = LockState(
            original_data=conflict,
            original_updated_at=self._timestamp(conflict),
        )
        return conflict

    def reset(self) -> None:
        self.state = LockState()
