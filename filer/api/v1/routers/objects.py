"""Object transfer endpoints.

GET downloads an object, HEAD returns its headers only, PUT creates or
replaces it from the raw request body, POST uploads one or more files from a
multipart form (optionally streamed as server-sent events) and DELETE removes
one object or, with ``?recursive``, everything under a prefix.
"""

from __future__ import annotations

import json
import logging
import queue
import tempfile
import threading
from typing import Any, AsyncIterator, BinaryIO, Iterator

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as FormFile

from filer.api.v1.conditional import evaluate_preconditions
from filer.api.v1.deps import (
    get_object_service,
    get_upload_service,
    require_permissions,
)
from filer.api.v1.schemas.objects import (
    ObjectDeleteOut,
    ObjectOut,
    UploadDoneOut,
    UploadErrorOut,
    UploadFileOut,
    UploadStartOut,
)
from filer.api.v1.utils import (
    PATH_HEADER,
    extract_meta,
    object_headers,
    object_to_json,
    parse_http_date,
    storage_http_exception,
)
from filer.app.services.object_service import ObjectService
from filer.app.services.upload_service import (
    EVENT_COMPLETE,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_FILE,
    EVENT_START,
    UploadEvent,
    UploadFailedError,
    UploadFile,
    UploadService,
)
from filer.common.errors import StorageError
from filer.common.permissions import Permissions
from filer.domain.content_type import (
    SNIFF_BYTES,
    resolve_content_type,
    sniff_content_type,
)
from filer.infra.storage.client import ObjectRecord
from filer.infra.storage.streams import read_chunk

logger = logging.getLogger("filer.upload")

router = APIRouter()

STREAM_CHUNK_BYTES = 64 * 1024
# PUT bodies above this size spill from memory to a temporary file
SPOOL_MEMORY_BYTES = 8 * 1024 * 1024
EVENT_STREAM = "text/event-stream"

_EVENT_SCHEMAS = {
    EVENT_START: UploadStartOut,
    EVENT_FILE: UploadFileOut,
    EVENT_ERROR: UploadErrorOut,
    EVENT_DONE: UploadDoneOut,
}


def _stat_object(
    service: ObjectService, backend: str, path: str
) -> tuple[ObjectRecord, str]:
    try:
        record = service.get_object(backend, path)
    except StorageError as exc:
        raise storage_http_exception(exc) from exc
    return record, resolve_content_type(record.content_type, None, record.key)


def _short_circuit(
    request: Request, record: ObjectRecord, headers: dict[str, str]
) -> Response | None:
    outcome = evaluate_preconditions(request.headers, record)
    if outcome is None:
        return None
    headers = {k: v for k, v in headers.items() if k != "Content-Length"}
    return Response(status_code=outcome, headers=headers)


def _iter_body(stream: BinaryIO, head: bytes) -> Iterator[bytes]:
    try:
        if head:
            yield head
        for chunk in iter(lambda: stream.read(STREAM_CHUNK_BYTES), b""):
            yield chunk
    finally:
        stream.close()


@router.head(
    "/filer/{backend}/{path:path}",
    summary="Get object metadata",
    description="Object headers without the body. Conditional headers are honored.",
)
def head_object(
    backend: str,
    path: str,
    request: Request,
    service: ObjectService = Depends(get_object_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_READ)),
) -> Response:
    record, content_type = _stat_object(service, backend, path)
    headers = object_headers(record, content_type)
    short = _short_circuit(request, record, headers)
    if short is not None:
        return short
    return Response(status_code=status.HTTP_200_OK, headers=headers)


@router.get(
    "/filer/{backend}/{path:path}",
    summary="Download object",
    description=(
        "Stream the object body. If-Match, If-Unmodified-Since, If-None-Match "
        "and If-Modified-Since are evaluated against the opened object before "
        "any body bytes are sent."
    ),
)
def download_object(
    backend: str,
    path: str,
    request: Request,
    service: ObjectService = Depends(get_object_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_READ)),
) -> Response:
    try:
        stream, record = service.read_object(backend, path)
    except StorageError as exc:
        raise storage_http_exception(exc) from exc
    try:
        head = read_chunk(stream, SNIFF_BYTES)
    except BaseException:
        stream.close()
        raise

    content_type = resolve_content_type(
        record.content_type, sniff_content_type(head), record.key
    )
    headers = object_headers(record, content_type)
    # preconditions are judged on the record whose body is being served
    short = _short_circuit(request, record, headers)
    if short is not None:
        stream.close()
        return short
    return StreamingResponse(
        _iter_body(stream, head),
        status_code=status.HTTP_200_OK,
        headers=headers,
    )


@router.put(
    "/filer/{backend}/{path:path}",
    status_code=status.HTTP_201_CREATED,
    response_model=ObjectOut,
    summary="Create or replace object",
    description=(
        "The request body becomes the object. Content-Type, Last-Modified and "
        "X-Meta-* headers are stored; `If-None-Match: *` refuses to overwrite."
    ),
)
async def put_object(
    backend: str,
    path: str,
    request: Request,
    service: ObjectService = Depends(get_object_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_WRITE)),
) -> JSONResponse:
    headers = request.headers
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_BYTES)
    try:
        async for chunk in request.stream():
            spool.write(chunk)
        spool.seek(0)
        record = await run_in_threadpool(
            service.create_object,
            backend,
            path,
            spool,
            content_type=headers.get("content-type") or None,
            modified=parse_http_date(headers.get("last-modified")),
            meta=extract_meta(headers),
            if_not_exists=(headers.get("if-none-match") or "").strip() == "*",
        )
    except StorageError as exc:
        raise storage_http_exception(exc) from exc
    finally:
        spool.close()
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=object_to_json(record))


@router.delete(
    "/filer/{backend}/{path:path}",
    summary="Delete object(s)",
    description=(
        "Without `recursive`, delete exactly one object. With `recursive=true` "
        "delete the whole subtree; with `recursive=false` only immediate children."
    ),
)
def delete_object(
    backend: str,
    path: str,
    request: Request,
    service: ObjectService = Depends(get_object_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_DELETE)),
) -> dict[str, Any]:
    raw_recursive = request.query_params.get("recursive")
    try:
        if raw_recursive is None:
            record = service.delete_object(backend, path)
            return object_to_json(record)
        recursive = _recursive_flag(raw_recursive)
        result = service.delete_objects(backend, path, recursive=recursive)
    except StorageError as exc:
        raise storage_http_exception(exc) from exc
    return ObjectDeleteOut(
        name=result.name,
        body=[ObjectOut.model_validate(record) for record in result.items],
    ).model_dump(mode="json", exclude_none=True)


def _recursive_flag(raw: str) -> bool:
    # a bare ?recursive counts as true
    if not raw:
        return True
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _form_files(form: Any) -> list[UploadFile]:
    files: list[UploadFile] = []
    for item in form.getlist("file"):
        if not isinstance(item, FormFile):
            continue
        part_headers = item.headers
        files.append(
            UploadFile(
                body=item.file,
                filename=part_headers.get(PATH_HEADER) or item.filename or None,
                content_type=item.content_type,
                meta=extract_meta(part_headers),
                modified=parse_http_date(part_headers.get("last-modified")),
                size=item.size,
            )
        )
    return files


def _event_payload(event: UploadEvent) -> str:
    if event.event == EVENT_COMPLETE:
        return json.dumps(object_to_json(event.data["object"]))
    schema = _EVENT_SCHEMAS[event.event]
    return schema.model_validate(event.data).model_dump_json()


async def _stream_upload(
    service: UploadService,
    backend: str,
    path: str,
    files: list[UploadFile],
    *,
    is_dir: bool,
    shared_meta: dict[str, str],
) -> AsyncIterator[dict[str, str]]:
    events: queue.Queue[UploadEvent] = queue.Queue()
    cancel = threading.Event()

    def worker() -> None:
        try:
            service.upload(
                backend,
                path,
                files,
                is_dir=is_dir,
                shared_meta=shared_meta,
                emit=events.put,
                cancel=cancel,
            )
        except UploadFailedError as exc:
            events.put(
                UploadEvent(
                    EVENT_ERROR,
                    {"index": exc.index, "path": exc.path, "message": str(exc)},
                )
            )
        except Exception as exc:
            logger.exception("upload_worker_failed")
            events.put(
                UploadEvent(EVENT_ERROR, {"index": 0, "path": path, "message": str(exc)})
            )
        finally:
            for file in files:
                file.body.close()

    thread = threading.Thread(target=worker, name="filer-upload", daemon=True)
    thread.start()
    try:
        while True:
            event = await run_in_threadpool(events.get)
            yield {"event": event.event, "data": _event_payload(event)}
            if event.terminal:
                break
    finally:
        # a disconnected client stops the worker at its next read
        cancel.set()


async def _upload(
    backend: str,
    path: str,
    request: Request,
    objects: ObjectService,
    uploads: UploadService,
) -> Response:
    is_dir = path in ("", "/") or request.url.path.endswith("/")
    form = await request.form()
    files = _form_files(form)
    shared_meta = extract_meta(request.headers)
    try:
        objects.locate(backend, path)
        uploads.validate(path, is_dir, files)
    except StorageError as exc:
        await form.close()
        raise storage_http_exception(exc) from exc

    if EVENT_STREAM in request.headers.get("accept", ""):
        return EventSourceResponse(
            _stream_upload(
                uploads,
                backend,
                path,
                files,
                is_dir=is_dir,
                shared_meta=shared_meta,
            ),
        )

    try:
        records = await run_in_threadpool(
            uploads.upload,
            backend,
            path,
            files,
            is_dir=is_dir,
            shared_meta=shared_meta,
        )
    except StorageError as exc:
        raise storage_http_exception(exc) from exc
    finally:
        await form.close()
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=[object_to_json(record) for record in records],
    )


@router.post(
    "/filer/{backend}",
    status_code=status.HTTP_201_CREATED,
    summary="Upload files to backend root",
)
async def upload_root(
    backend: str,
    request: Request,
    objects: ObjectService = Depends(get_object_service),
    uploads: UploadService = Depends(get_upload_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_WRITE)),
) -> Response:
    return await _upload(backend, "", request, objects, uploads)


@router.post(
    "/filer/{backend}/{path:path}",
    status_code=status.HTTP_201_CREATED,
    summary="Upload files",
    description=(
        "multipart/form-data with one or more `file` fields. A path ending in "
        "`/` is a directory and each file lands under it. With "
        "`Accept: text/event-stream` progress is streamed as start/file/"
        "complete/error/done events."
    ),
)
async def upload_objects(
    backend: str,
    path: str,
    request: Request,
    objects: ObjectService = Depends(get_object_service),
    uploads: UploadService = Depends(get_upload_service),
    _: object = Depends(require_permissions(Permissions.OBJECTS_WRITE)),
) -> Response:
    return await _upload(backend, path, request, objects, uploads)

