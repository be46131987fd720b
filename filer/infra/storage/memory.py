"""In-memory storage driver.

Objects live in a lock-protected dict for the lifetime of the process. Used
for ephemeral backends and as the reference driver in tests.
"""

from __future__ import annotations

import hashlib
import io
import logging
import threading
from datetime import datetime, timezone
from typing import BinaryIO, Mapping, Sequence

from filer.common.errors import (
    ConflictError,
    InvalidArgumentError,
    ObjectNotFoundError,
)
from filer.infra.storage.client import (
    ListPage,
    ObjectRecord,
    effective_modified,
    prepare_meta,
)
from filer.infra.storage.paging import paginate_keys
from filer.infra.storage.streams import read_chunk

logger = logging.getLogger("filer.storage")

_READ_CHUNK_BYTES = 1024 * 1024


class MemoryStorageDriver:
    """Storage driver keeping object bodies in process memory."""

    max_delete_batch: int | None = None

    def __init__(self, *, url: str = "mem://") -> None:
        self._url = url
        self._lock = threading.Lock()
        self._objects: dict[str, tuple[bytes, ObjectRecord]] = {}

    def create(
        self,
        key: str,
        body: BinaryIO,
        *,
        content_type: str | None = None,
        modified: datetime | None = None,
        meta: Mapping[str, str] | None = None,
        if_not_exists: bool = False,
    ) -> ObjectRecord:
        _check_object_key(key)
        if if_not_exists:
            with self._lock:
                if key in self._objects:
                    raise ConflictError(f"Object already exists: {key}")

        # the body is consumed before anything becomes visible
        digest = hashlib.md5()
        buffer = io.BytesIO()
        while True:
            chunk = read_chunk(body, _READ_CHUNK_BYTES)
            if not chunk:
                break
            digest.update(chunk)
            buffer.write(chunk)
        data = buffer.getvalue()

        stored_meta = prepare_meta(meta, modified)
        record = ObjectRecord(
            key=key,
            size=len(data),
            modified=effective_modified(datetime.now(timezone.utc), stored_meta),
            content_type=content_type or None,
            etag=digest.hexdigest(),
            meta=stored_meta,
        )
        with self._lock:
            if if_not_exists and key in self._objects:
                raise ConflictError(f"Object already exists: {key}")
            self._objects[key] = (data, record)
        return record

    def metadata(self, key: str) -> ObjectRecord:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(f"Object not found: {key}")
        return entry[1]

    def read(self, key: str) -> tuple[BinaryIO, ObjectRecord]:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(f"Object not found: {key}")
        data, record = entry
        return io.BytesIO(data), record

    def list_page(
        self,
        prefix: str,
        *,
        delimiter: str | None = None,
        token: str | None = None,
        limit: int | None = None,
    ) -> ListPage:
        with self._lock:
            snapshot = {key: record for key, (_, record) in self._objects.items()}
        return paginate_keys(
            sorted(snapshot),
            prefix=prefix,
            load=snapshot.__getitem__,
            delimiter=delimiter,
            token=token,
            limit=limit,
        )

    def delete(self, key: str) -> None:
        with self._lock:
            if self._objects.pop(key, None) is None:
                raise ObjectNotFoundError(f"Object not found: {key}")

    def delete_many(self, keys: Sequence[str]) -> list[str]:
        deleted: list[str] = []
        with self._lock:
            for key in keys:
                if self._objects.pop(key, None) is not None:
                    deleted.append(key)
        return deleted

    def describe(self) -> str:
        return self._url

    def close(self) -> None:
        with self._lock:
            count = len(self._objects)
            self._objects.clear()
        logger.debug(
            "memory_backend_closed",
            extra={"extra": {"backend": self._url, "objects": count}},
        )


def _check_object_key(key: str) -> None:
    if not key or key.endswith("/"):
        raise InvalidArgumentError(f"Invalid object key: {key!r}")


__all__ = ["MemoryStorageDriver"]
