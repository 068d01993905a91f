from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from editguard.api.deps.request_identity import get_request_identity
from editguard.api.deps.stores import get_presence_store
from editguard.schemas.edit_session import (
    ActiveEditorsResponse,
    EditSessionRegisterResponse,
    EditSessionReleaseResponse,
    EditSessionRequest,
)
from editguard.schemas.request_identity import RequestIdentity
from editguard.services.presence_store import PresenceStore
from editguard.services.presence_tracker import PresenceTracker

logger = logging.getLogger(__name__)

router = APIRouter()


def _tracker(store: PresenceStore, identity: RequestIdentity) -> PresenceTracker:
    return PresenceTracker(store, identity.user_id)


def _require_user(identity: RequestIdentity) -> str:
    if not identity.user_id:
        raise HTTPException(status_code=401, detail="X-User-Id or X-User-Email header is required.")
    return identity.user_id


@router.post("/register", response_model=EditSessionRegisterResponse)
def register_edit_session(
    payload: EditSessionRequest,
    store: PresenceStore = Depends(get_presence_store),
    identity: RequestIdentity = Depends(get_request_identity),
):
    tracker = _tracker(store, identity)
    registered = tracker.register(payload.resource_type, payload.resource_id)
    return EditSessionRegisterResponse(
        registered=registered,
        heartbeat_seconds=tracker.heartbeat_seconds,
        stale_after_seconds=tracker.stale_seconds,
    )


@router.post("/heartbeat", response_model=EditSessionRegisterResponse)
def heartbeat_edit_session(
    payload: EditSessionRequest,
    store: PresenceStore = Depends(get_presence_store),
    identity: RequestIdentity = Depends(get_request_identity),
):
    tracker = _tracker(store, identity)
    registered = tracker.resume(payload.resource_type, payload.resource_id)
    return EditSessionRegisterResponse(
        registered=registered,
        heartbeat_seconds=tracker.heartbeat_seconds,
        stale_after_seconds=tracker.stale_seconds,
    )


@router.post("/unregister", response_model=EditSessionReleaseResponse)
def unregister_edit_session(
    payload: EditSessionRequest,
    store: PresenceStore = Depends(get_presence_store),
    identity: RequestIdentity = Depends(get_request_identity),
):
    user_id = _require_user(identity)
    try:
        removed = store.delete(
            user_id=user_id,
            resource_type=payload.resource_type,
            resource_id=payload.resource_id,
        )
    except SQLAlchemyError as exc:
        logger.warning(
            "presence_unregister_failed user_id=%s resource_type=%s resource_id=%s error=%s",
            user_id,
            payload.resource_type,
            payload.resource_id,
            exc,
        )
        removed = False
    if not removed:
        return EditSessionReleaseResponse(released=False, message="No edit session was active.")
    return EditSessionReleaseResponse(released=True, message="Edit session ended.")


@router.get("/{resource_type}/{resource_id}/active", response_model=ActiveEditorsResponse)
def list_active_editors(
    resource_type: str,
    resource_id: str,
    store: PresenceStore = Depends(get_presence_store),
    identity: RequestIdentity = Depends(get_request_identity),
):
    tracker = _tracker(store, identity)
    return ActiveEditorsResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        editors=tracker.list_active(resource_type, resource_id),
    )
