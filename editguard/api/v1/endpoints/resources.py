from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from editguard.api.deps.request_identity import get_request_identity
from editguard.api.deps.stores import get_resource_store
from editguard.schemas.request_identity import RequestIdentity
from editguard.schemas.resource import (
    ResourceCreateRequest,
    ResourceResponse,
    ResourceUpdateRequest,
)
from editguard.services.resource_store import ResourceStore, ResourceStoreFailure

router = APIRouter()


def _raise_store_failure(exc: ResourceStoreFailure) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _response(store: ResourceStore, resource_type: str, data: dict) -> ResourceResponse:
    return ResourceResponse(
        resource_type=resource_type,
        display_name=store.display_name(resource_type),
        data=data,
    )


@router.get("/{resource_type}/{resource_id}", response_model=ResourceResponse)
def get_resource(
    resource_type: str,
    resource_id: str,
    store: ResourceStore = Depends(get_resource_store),
):
    try:
        data = store.fetch_by_id(resource_type, resource_id)
    except ResourceStoreFailure as exc:
        _raise_store_failure(exc)
    return _response(store, resource_type, data)


@router.post(
    "/{resource_type}",
    response_model=ResourceResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_resource(
    resource_type: str,
    payload: ResourceCreateRequest,
    store: ResourceStore = Depends(get_resource_store),
    identity: RequestIdentity = Depends(get_request_identity),
):
    try:
        data = store.create(resource_type, payload.values, created_by=identity.email or identity.user_id)
    except ResourceStoreFailure as exc:
        _raise_store_failure(exc)
    return _response(store, resource_type, data)


@router.patch("/{resource_type}/{resource_id}", response_model=ResourceResponse)
def update_resource(
    resource_type: str,
    resource_id: str,
    payload: ResourceUpdateRequest,
    store: ResourceStore = Depends(get_resource_store),
    identity: RequestIdentity = Depends(get_request_identity),
):
    try:
        data = store.update(
            resource_type,
            resource_id,
            payload.changes,
            expected_updated_at=payload.expected_updated_at,
            changed_by=identity.email or identity.user_id,
        )
    except ResourceStoreFailure as exc:
        _raise_store_failure(exc)
    return _response(store, resource_type, data)
