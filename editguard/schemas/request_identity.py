from __future__ import annotations

from pydantic import BaseModel


class RequestIdentity(BaseModel):
    user_id: str | None = None
    email: str | None = None
    auth_source: str = "anonymous"
