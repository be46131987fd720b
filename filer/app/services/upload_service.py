"""Multi-file uploads with progress events and rollback.

Each file is written through :meth:`ObjectService.create_object`. When any
file fails, every file already committed by the same request is deleted
before the error is reported. Progress is published as :class:`UploadEvent`
values through an ``emit`` callable, so the transport (SSE or none) is
decided by the caller.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Callable, Mapping, Sequence

from filer.app.services.object_service import ObjectService
from filer.common.errors import InvalidArgumentError, StorageError, join_errors
from filer.domain.content_type import resolve_content_type
from filer.domain.identifier import SEPARATOR, normalize_path
from filer.infra.storage.client import ObjectRecord
from filer.infra.storage.streams import CancellableReader, ProgressReader

logger = logging.getLogger("filer.upload")

EVENT_START = "start"
EVENT_FILE = "file"
EVENT_COMPLETE = "complete"
EVENT_ERROR = "error"
EVENT_DONE = "done"


@dataclass(frozen=True, slots=True)
class UploadFile:
    """One file of a multi-file upload."""

    body: BinaryIO
    filename: str | None = None
    content_type: str | None = None
    meta: Mapping[str, str] = field(default_factory=dict)
    modified: datetime | None = None
    size: int | None = None


@dataclass(frozen=True, slots=True)
class UploadEvent:
    event: str
    data: dict[str, Any]

    @property
    def terminal(self) -> bool:
        return self.event in (EVENT_ERROR, EVENT_DONE)


class UploadFailedError(StorageError):
    """A file failed; carries its position and destination path.

    The status of the triggering error is kept so the HTTP layer reports the
    same code it would have for a single upload.
    """

    def __init__(self, cause: BaseException, *, index: int, path: str):
        super().__init__(str(cause))
        self.cause = cause
        self.index = index
        self.path = path
        if isinstance(cause, StorageError):
            self.status_code = cause.status_code
            self.error_code = cause.error_code


def destination_path(base: str, is_dir: bool, file: UploadFile, index: int) -> str:
    """Object path for ``file``: ``base`` itself, or ``base/<filename>``."""
    if not is_dir:
        return "/" + normalize_path(base)
    filename = file.filename or f"file-{index}"
    joined = normalize_path(f"{base.rstrip(SEPARATOR)}{SEPARATOR}{filename}")
    return "/" + joined


class UploadService:
    def __init__(self, objects: ObjectService):
        self._objects = objects

    def validate(self, path: str, is_dir: bool, files: Sequence[UploadFile]) -> None:
        """Reject requests that cannot succeed before anything is written."""
        if not files:
            raise InvalidArgumentError("No files in upload; use form field 'file'")
        if not is_dir and len(files) > 1:
            raise InvalidArgumentError(
                f"cannot upload {len(files)} files to explicit path {path!r}; "
                "add a trailing slash to upload to a directory"
            )

    def upload(
        self,
        name: str,
        path: str,
        files: Sequence[UploadFile],
        *,
        is_dir: bool,
        shared_meta: Mapping[str, str] | None = None,
        emit: Callable[[UploadEvent], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> list[ObjectRecord]:
        """Upload ``files`` in order and return the committed records.

        Raises:
            UploadFailedError: After rollback, when any file fails.
        """
        self.validate(path, is_dir, files)
        publish = emit or (lambda event: None)

        total_bytes = sum(file.size or 0 for file in files)
        publish(UploadEvent(EVENT_START, {"files": len(files), "bytes": total_bytes}))

        committed: list[ObjectRecord] = []
        written_total = 0
        for index, file in enumerate(files):
            dest = destination_path(path, is_dir, file, index)
            declared = file.size or 0
            publish(
                UploadEvent(
                    EVENT_FILE,
                    {"index": index, "path": dest, "written": 0, "bytes": declared},
                )
            )

            def progress(
                written: int, index: int = index, dest: str = dest, declared: int = declared
            ) -> None:
                publish(
                    UploadEvent(
                        EVENT_FILE,
                        {
                            "index": index,
                            "path": dest,
                            "written": written,
                            "bytes": declared,
                        },
                    )
                )

            body: BinaryIO = ProgressReader(file.body, progress)  # type: ignore[assignment]
            if cancel is not None:
                body = CancellableReader(body, cancel)  # type: ignore[assignment]

            meta = dict(shared_meta or {})
            meta.update(file.meta)
            content_type = resolve_content_type(
                file.content_type, None, file.filename or dest
            )
            try:
                record = self._objects.create_object(
                    name,
                    dest,
                    body,
                    content_type=content_type,
                    modified=file.modified,
                    meta=meta,
                )
            except Exception as exc:
                error = join_errors(exc, self._rollback(name, committed))
                logger.warning(
                    "upload_failed",
                    extra={
                        "extra": {
                            "backend": name,
                            "index": index,
                            "path": dest,
                            "rolled_back": len(committed),
                            "error": str(error),
                        }
                    },
                )
                raise UploadFailedError(error, index=index, path=dest) from exc

            committed.append(record)
            written_total += record.size
            publish(UploadEvent(EVENT_COMPLETE, {"object": record}))

        publish(UploadEvent(EVENT_DONE, {"files": len(committed), "bytes": written_total}))
        return committed

    def _rollback(self, name: str, committed: Sequence[ObjectRecord]) -> list[BaseException]:
        errors: list[BaseException] = []
        for record in committed:
            try:
                self._objects.delete_object(name, record.path)
            except Exception as exc:
                errors.append(exc)
        return errors


__all__ = [
    "EVENT_COMPLETE",
    "EVENT_DONE",
    "EVENT_ERROR",
    "EVENT_FILE",
    "EVENT_START",
    "UploadEvent",
    "UploadFailedError",
    "UploadFile",
    "UploadService",
    "destination_path",
]
