from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from editguard.schemas.base import BaseSchema


class ResourceCreateRequest(BaseSchema):
    values: dict[str, Any] = Field(default_factory=dict)


class ResourceUpdateRequest(BaseSchema):
    changes: dict[str, Any] = Field(default_factory=dict)
    # Version the editor started from; omitted => unconditional write.
    expected_updated_at: datetime | None = None


class ResourceResponse(BaseSchema):
    resource_type: str
    display_name: str
    data: dict[str, Any]
