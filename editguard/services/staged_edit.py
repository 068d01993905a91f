from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Protocol

from editguard.core.flow_logging import flow_info
from editguard.services.concurrent_edit import ConcurrentEditCoordinator
from editguard.services.resource_store import ResourceStoreFailure

logger = logging.getLogger(__name__)

_MISSING = object()


class EditForm(Protocol):
    def values(self) -> dict[str, Any]: ...

    def reset(self, values: dict[str, Any]) -> None: ...

    @property
    def is_dirty(self) -> bool: ...

    def changed_fields(self) -> dict[str, Any]: ...


class FormState:
    """Flat field map with change tracking against the last reset."""

    def __init__(self, values: dict[str, Any] | None = None):
        self._baseline: dict[str, Any] = dict(values or {})
        self._values: dict[str, Any] = dict(self._baseline)

    def values(self) -> dict[str, Any]:
        return dict(self._values)

    def get(self, field: str, default: Any = None) -> Any:
        return self._values.get(field, default)

    def set(self, field: str, value: Any) -> None:
        self._values[field] = value

    def update(self, **values: Any) -> None:
        self._values.update(values)

    def reset(self, values: dict[str, Any]) -> None:
        self._baseline = dict(values)
        self._values = dict(values)

    @property
    def is_dirty(self) -> bool:
        return self._values != self._baseline

    def changed_fields(self) -> dict[str, Any]:
        return {
            field: value
            for field, value in self._values.items()
            if self._baseline.get(field, _MISSING) != value
        }


class EditMode(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"


@dataclass
class SaveOutcome:
    saved: bool
    conflict: bool = False
    data: dict[str, Any] | None = None


class StagedEditController:
    """
    View/Edit mode state machine around one form.

    Entering edit mode snapshots the form, baselines the optimistic lock
    and turns on presence. Leaving it (cancel, save or close) turns
    presence off again.
    """

    def __init__(
        self,
        coordinator: ConcurrentEditCoordinator,
        form: EditForm,
        *,
        initial_data: dict[str, Any] | None = None,
        can_edit: bool = True,
        changed_by: str | None = None,
    ):
        self.coordinator = coordinator
        self.form = form
        self.initial_data = initial_data
        self.can_edit = can_edit
        self.changed_by = changed_by
        self.mode = EditMode.VIEWING
        self._snapshot: dict[str, Any] = form.values()
        self._external_refresh = coordinator.on_refresh
        coordinator.on_refresh = self._apply_server_data

    @property
    def is_editing(self) -> bool:
        return self.mode == EditMode.EDITING

    @property
    def is_dirty(self) -> bool:
        return self.form.is_dirty

    def _form_values_from(self, record: dict[str, Any]) -> dict[str, Any]:
        return {field: record.get(field, value) for field, value in self.form.values().items()}

    def load(self, record: dict[str, Any]) -> None:
        """Show a freshly fetched record while viewing."""
        self.initial_data = record
        values = self._form_values_from(record)
        self.form.reset(values)
        self._snapshot = values

    def start_edit(self) -> bool:
        if not self.can_edit:
            return False
        if self.is_editing:
            return True
        self._snapshot = self.form.values()
        if self.coordinator.resource_id and self.initial_data is not None:
            self.coordinator.lock.initialize(self.initial_data)
        self.mode = EditMode.EDITING
        self.coordinator.set_editing(True)
        flow_info(
            logger,
            "staged_edit_started resource_type=%s resource_id=%s",
            self.coordinator.resource_type,
            self.coordinator.resource_id or "-",
            category="presence",
        )
        return True

    def cancel_edit(self) -> None:
        if not self.is_editing:
            return
        self.form.reset(self._snapshot)
        self.mode = EditMode.VIEWING
        self.coordinator.set_editing(False)
        self.coordinator.lock.reset()

    def discard_changes(self) -> None:
        if self.is_editing:
            self.form.reset(self._snapshot)

    def _apply_server_data(self, server_data: dict[str, Any]) -> None:
        self.initial_data = server_data
        values = self._form_values_from(server_data)
        self.form.reset(values)
        self._snapshot = values
        if self._external_refresh is not None:
            self._external_refresh(server_data)

    def _persist(self) -> dict[str, Any]:
        store = self.coordinator.resource_store
        resource_type = self.coordinator.resource_type
        resource_id = self.coordinator.resource_id
        if not resource_id:
            record = store.create(resource_type, self.form.values(), created_by=self.changed_by)
            self.coordinator.bind(str(record["id"]))
            return record
        return store.update(
            resource_type,
            resource_id,
            self.form.changed_fields(),
            expected_updated_at=self.coordinator.lock.original_updated_at,
            changed_by=self.changed_by,
        )

    def save(self) -> SaveOutcome:
        if not self.is_editing:
            return SaveOutcome(saved=False)

        check = self.coordinator.check_before_save()
        if not check.can_save:
            return SaveOutcome(
                saved=False,
                conflict=self.coordinator.has_conflict,
                data=check.latest_data,
            )

        try:
            record = self._persist()
        except ResourceStoreFailure as exc:
            if exc.code != "STALE_WRITE":
                raise
            # Another save landed between the check and the write.
            try:
                latest = self.coordinator.resource_store.fetch_by_id(
                    self.coordinator.resource_type, self.coordinator.resource_id
                )
            except Exception as fetch_exc:
                logger.warning(
                    "stale_write_refetch_failed resource_type=%s resource_id=%s error=%s",
                    self.coordinator.resource_type,
                    self.coordinator.resource_id,
                    fetch_exc,
                )
                return SaveOutcome(saved=False)
            conflict = self.coordinator.lock.check_for_conflict(latest)
            if conflict:
                self.coordinator.latest_server_data = latest
                self.coordinator.show_conflict_dialog = True
            return SaveOutcome(saved=False, conflict=conflict, data=latest)

        self.mode = EditMode.VIEWING
        self.coordinator.set_editing(False)
        self.coordinator.lock.reset()
        self.load(record)
        return SaveOutcome(saved=True, data=record)

    def close(self) -> None:
        self.mode = EditMode.VIEWING
        self.coordinator.close()

    def __enter__(self) -> "StagedEditController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
