from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from editguard.schemas.base import BaseSchema


class EditSessionData(BaseSchema):
    """Presence record as seen by readers (detached from the ORM session)."""

    user_id: str
    resource_type: str
    resource_id: str
    started_at: datetime
    last_heartbeat: datetime


class EditSessionRequest(BaseSchema):
    resource_type: str = Field(min_length=1, max_length=64)
    resource_id: str = Field(min_length=1, max_length=64)

    @field_validator("resource_type", "resource_id")
    @classmethod
    def strip_value(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank.")
        return value


class EditSessionRegisterResponse(BaseSchema):
    registered: bool
    heartbeat_seconds: float
    stale_after_seconds: int


class EditSessionReleaseResponse(BaseSchema):
    released: bool
    message: str


class ActiveEditorsResponse(BaseSchema):
    resource_type: str
    resource_id: str
    editors: list[EditSessionData]
