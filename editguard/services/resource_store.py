from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select

from editguard.core.clock import parse_instant
from editguard.db.base import Base
from editguard.db.session import SessionFactory
from editguard.models.corrective_action import CorrectiveAction
from editguard.models.non_conformity import NonConformity
from editguard.models.purchase_order import PurchaseOrder

logger = logging.getLogger(__name__)

_SYSTEM_FIELDS = frozenset({"id", "created_at", "updated_at", "created_by", "last_changed_by"})


@dataclass(frozen=True)
class ResourceType:
    key: str
    model: type[Base]
    display_name: str


RESOURCE_TYPES: dict[str, ResourceType] = {
    item.key: item
    for item in (
        ResourceType("purchase_orders", PurchaseOrder, "Purchase Order"),
        ResourceType("non_conformities", NonConformity, "Non-Conformity"),
        ResourceType("corrective_actions", CorrectiveAction, "CAPA"),
    )
}


@dataclass
class ResourceStoreFailure(Exception):
    code: str
    message: str
    status_code: int = 400
    current_updated_at: datetime | None = None

    def to_detail(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        if self.current_updated_at is not None:
            detail["current_updated_at"] = self.current_updated_at.isoformat()
        return detail


class ResourceStore:
    def __init__(self, session_factory: SessionFactory, registry: dict[str, ResourceType] | None = None):
        self.session_factory = session_factory
        self.registry = registry if registry is not None else RESOURCE_TYPES

    def _resource_type(self, resource_type: str) -> ResourceType:
        entry = self.registry.get((resource_type or "").strip())
        if entry is None:
            raise ResourceStoreFailure(
                code="RESOURCE_TYPE_UNKNOWN",
                message=f"Unknown resource type '{resource_type}'.",
                status_code=404,
            )
        return entry

    def display_name(self, resource_type: str) -> str:
        return self._resource_type(resource_type).display_name

    def editable_fields(self, resource_type: str) -> set[str]:
        model = self._resource_type(resource_type).model
        return {column.key for column in model.__table__.columns} - _SYSTEM_FIELDS

    def _coerce(self, model: type[Base], values: dict[str, Any]) -> dict[str, Any]:
        columns = {column.key: column for column in model.__table__.columns}
        coerced: dict[str, Any] = {}
        for field, value in values.items():
            column = columns.get(field)
            if column is None or field in _SYSTEM_FIELDS:
                raise ResourceStoreFailure(
                    code="FIELD_NOT_EDITABLE",
                    message=f"Field '{field}' cannot be written.",
                    status_code=422,
                )
            try:
                adapter = TypeAdapter(Optional[column.type.python_type])
                coerced[field] = adapter.validate_python(value)
            except ValidationError as exc:
                raise ResourceStoreFailure(
                    code="FIELD_INVALID",
                    message=f"Field '{field}' has an invalid value: {exc.errors()[0]['msg']}",
                    status_code=422,
                ) from exc
        return coerced

    @staticmethod
    def _load(db, model: type[Base], resource_id: str, *, for_update: bool = False):
        stmt = select(model).where(model.id == resource_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = db.execute(stmt).scalar_one_or_none()
        if row is None:
            raise ResourceStoreFailure(
                code="RESOURCE_NOT_FOUND",
                message=f"{model.__name__} '{resource_id}' was not found.",
                status_code=404,
            )
        return row

    def fetch_by_id(self, resource_type: str, resource_id: str) -> dict:
        model = self._resource_type(resource_type).model
        with self.session_factory() as db:
            return self._load(db, model, resource_id).to_dict()

    def create(
        self,
        resource_type: str,
        values: dict[str, Any],
        *,
        created_by: str | None = None,
    ) -> dict:
        model = self._resource_type(resource_type).model
        fields = self._coerce(model, values)
        author = (created_by or "").strip() or "system@local"
        with self.session_factory() as db:
            row = model(**fields, created_by=author, last_changed_by=author)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.to_dict()

    def update(
        self,
        resource_type: str,
        resource_id: str,
        patch: dict[str, Any],
        *,
        expected_updated_at: datetime | str | None = None,
        changed_by: str | None = None,
    ) -> dict:
        """
        Apply `patch` to one resource and return the stored record.

        When `expected_updated_at` is given, the write is refused with
        STALE_WRITE if the stored version is strictly newer.
        """
        model = self._resource_type(resource_type).model
        fields = self._coerce(model, patch)
        with self.session_factory() as db:
            row = self._load(db, model, resource_id, for_update=True)
            expected = parse_instant(expected_updated_at)
            current = parse_instant(row.updated_at)
            if expected is not None and current is not None and current > expected:
                db.rollback()
                logger.warning(
                    "resource_stale_write resource_type=%s resource_id=%s expected=%s current=%s",
                    resource_type,
                    resource_id,
                    expected.isoformat(),
                    current.isoformat(),
                )
                raise ResourceStoreFailure(
                    code="STALE_WRITE",
                    message="Resource was changed by someone else since editing started.",
                    status_code=409,
                    current_updated_at=row.updated_at,
                )
            for field, value in fields.items():
                setattr(row, field, value)
            if changed_by:
                row.last_changed_by = changed_by
            db.commit()
            db.refresh(row)
            return row.to_dict()
