"""Backend listing and per-backend object listing endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from filer.api.v1.deps import get_object_service, require_permissions
from filer.api.v1.schemas.objects import BackendListOut, ObjectListOut, ObjectOut
from filer.api.v1.utils import storage_http_exception
from filer.app.services.object_service import ObjectService
from filer.common.errors import StorageError
from filer.common.permissions import Permissions

router = APIRouter()


@router.get(
    "/filer",
    response_model=BackendListOut,
    summary="List backends",
    description="Registered backends keyed by name, with their URLs.",
)
def list_backends(
    service: ObjectService = Depends(get_object_service),
    _: object = Depends(require_permissions(Permissions.BACKENDS_READ)),
) -> BackendListOut:
    return BackendListOut(body=service.backends())


@router.get(
    "/filer/{backend}",
    response_model=ObjectListOut,
    response_model_exclude_none=True,
    summary="List objects",
    description=(
        "List the object at `path`, or the entries under it. "
        "`limit=0` returns only the count; larger limits are capped at 1000."
    ),
)
def list_objects(
    backend: str,
    path: str = Query(default="/"),
    recursive: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=0),
    service: ObjectService = Depends(get_object_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_READ)),
) -> ObjectListOut:
    try:
        result = service.list_objects(
            backend,
            path,
            recursive=recursive,
            offset=offset,
            limit=limit,
        )
    except StorageError as exc:
        raise storage_http_exception(exc) from exc
    return ObjectListOut(
        name=result.name,
        count=result.count,
        body=[ObjectOut.model_validate(record) for record in result.items],
    )
