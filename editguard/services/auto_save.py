from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
import threading
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from editguard.core.clock import utcnow
from editguard.core.config import settings
from editguard.services.resource_store import ResourceStore, ResourceStoreFailure

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


def _error_message(exc: Exception) -> str:
    if isinstance(exc, ResourceStoreFailure):
        return exc.message
    return str(exc) or "Failed to save"


class AutoSaveQueue:
    """
    Debounced field-level auto-save for a single stored resource.

    Changes queued within the debounce window are written as one patch.
    A failed batch records per-field errors and is retried once.
    """

    def __init__(
        self,
        store: ResourceStore,
        resource_type: str,
        resource_id: str | None,
        *,
        enabled: bool = True,
        debounce_ms: int | None = None,
        retry_delay_ms: int | None = None,
        saved_indicator_ms: int | None = None,
        changed_by: str | None = None,
        on_success: Callable[[str], None] | None = None,
        on_error: Callable[[str, Exception], None] | None = None,
        timer_factory: TimerFactory = thread_timer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.enabled = enabled
        self.debounce_ms = settings.AUTO_SAVE_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self.retry_delay_ms = (
            settings.AUTO_SAVE_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms
        )
        self.saved_indicator_ms = (
            settings.AUTO_SAVE_SAVED_INDICATOR_MS if saved_indicator_ms is None else saved_indicator_ms
        )
        self.changed_by = changed_by
        self.on_success = on_success
        self.on_error = on_error
        self.timer_factory = timer_factory
        self.clock = clock

        self._lock = threading.RLock()
        self._debounce: TimerHandle | None = None
        self._retries: set[TimerHandle] = set()
        self._saved_reset: TimerHandle | None = None
        self._closed = False
        self.pending_changes: dict[str, Any] = {}
        self.saving_fields: set[str] = set()
        self.saved_fields: set[str] = set()
        self.errors: dict[str, str] = {}
        self.last_saved: datetime | None = None

    @property
    def active(self) -> bool:
        return bool(self.enabled and self.resource_id)

    @property
    def is_saving(self) -> bool:
        return bool(self.saving_fields)

    def queue_save(self, field: str, value: Any) -> None:
        if not self.active:
            return
        with self._lock:
            self.pending_changes[field] = value
            if self._debounce is not None:
                self._debounce.cancel()
            self._debounce = self.timer_factory(self.debounce_ms / 1000.0, self._flush)

    def _flush(self) -> None:
        with self._lock:
            self._debounce = None
            changes, self.pending_changes = self.pending_changes, {}
        if changes:
            self._perform_save(changes)

    def save_now(self) -> None:
        with self._lock:
            if self._debounce is not None:
                self._debounce.cancel()
        self._flush()

    def _clear_saved(self) -> None:
        with self._lock:
            self._saved_reset = None
            self.saved_fields = set()

    def _mark_saved(self, fields: list[str]) -> None:
        self.last_saved = self.clock()
        self.saved_fields = set(fields)
        if self._saved_reset is not None:
            self._saved_reset.cancel()
        self._saved_reset = self.timer_factory(self.saved_indicator_ms / 1000.0, self._clear_saved)
        for field in fields:
            self.errors.pop(field, None)
            if self.on_success is not None:
                self.on_success(field)

    def _perform_save(self, changes: dict[str, Any], *, is_retry: bool = False) -> bool:
        fields = list(changes)
        with self._lock:
            self.saving_fields.update(fields)
            for field in fields:
                self.errors.pop(field, None)
        try:
            self.store.update(
                self.resource_type,
                self.resource_id,
                changes,
                changed_by=self.changed_by,
            )
        except (ResourceStoreFailure, SQLAlchemyError) as exc:
            message = _error_message(exc)
            logger.warning(
                "auto_save_failed resource_type=%s resource_id=%s fields=%s retry=%s error=%s",
                self.resource_type,
                self.resource_id,
                ",".join(fields),
                is_retry,
                message,
            )
            with self._lock:
                for field in fields:
                    self.errors[field] = message
            if not is_retry:
                if self.on_error is not None:
                    for field in fields:
                        self.on_error(field, exc)
                self._schedule_retry(changes)
            return False
        finally:
            with self._lock:
                self.saving_fields.difference_update(fields)

        with self._lock:
            self._mark_saved(fields)
        return True

    def _schedule_retry(self, changes: dict[str, Any]) -> None:
        timer: TimerHandle | None = None

        def retry() -> None:
            with self._lock:
                self._retries.discard(timer)
                if self._closed:
                    return
            self._perform_save(changes, is_retry=True)

        with self._lock:
            if self._closed:
                return
            timer = self.timer_factory(self.retry_delay_ms / 1000.0, retry)
            self._retries.add(timer)

    def save_field(self, field: str, value: Any) -> bool:
        if not self.active:
            return False
        with self._lock:
            self.saving_fields.add(field)
            self.errors.pop(field, None)
        try:
            self.store.update(
                self.resource_type,
                self.resource_id,
                {field: value},
                changed_by=self.changed_by,
            )
        except (ResourceStoreFailure, SQLAlchemyError) as exc:
            with self._lock:
                self.errors[field] = _error_message(exc)
            if self.on_error is not None:
                self.on_error(field, exc)
            return False
        finally:
            with self._lock:
                self.saving_fields.discard(field)

        with self._lock:
            self._mark_saved([field])
        return True

    def clear_error(self, field: str) -> None:
        with self._lock:
            self.errors.pop(field, None)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            timers = [self._debounce, self._saved_reset, *self._retries]
            self._debounce = None
            self._saved_reset = None
            self._retries.clear()
        for timer in timers:
            if timer is not None:
                timer.cancel()

    def __enter__(self) -> "AutoSaveQueue":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
