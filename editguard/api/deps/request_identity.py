from __future__ import annotations

from fastapi import Request

from editguard.schemas.request_identity import RequestIdentity


def _header(request: Request, name: str) -> str | None:
    value = (request.headers.get(name) or "").strip()
    return value or None


def resolve_request_identity(request: Request) -> RequestIdentity:
    """
    Identify the caller from gateway-supplied headers.

    `X-User-Id` wins; `X-User-Email` is accepted as the id when no explicit
    id is sent. No header means an anonymous caller, for whom presence
    registration is a no-op.
    """
    email = _header(request, "X-User-Email")
    email = email.lower() if email else None
    user_id = _header(request, "X-User-Id") or email
    if user_id is None:
        return RequestIdentity()
    return RequestIdentity(user_id=user_id, email=email, auth_source="header")


def get_request_identity(request: Request) -> RequestIdentity:
    return resolve_request_identity(request)
