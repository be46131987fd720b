"""Object service: name-addressed operations over the backend registry.

Routers address objects as ``(backend name, path)``. The service turns that
pair into an identifier under the backend prefix, dispatches it through the
registry and binds the backend name onto every returned record.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Mapping

from filer.app.services.bulk import delete_prefix, iter_prefix
from filer.app.services.registry import BackendRegistration, BackendRegistry
from filer.app.services.resolution import resolve_target
from filer.common.errors import InvalidArgumentError
from filer.infra.observability.metrics import BYTES_UPLOADED, OBJECTS_DELETED
from filer.infra.storage.client import ObjectRecord, StorageDriver

logger = logging.getLogger("filer.storage")

# maximum page returned by one list call; clients paginate with offset
MAX_LIST_LIMIT = 1000


@dataclass(frozen=True, slots=True)
class ListResult:
    """A page of listed objects; ``count`` is the total before offset/limit."""

    name: str
    count: int
    items: list[ObjectRecord] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DeleteResult:
    name: str
    items: list[ObjectRecord] = field(default_factory=list)


class ObjectService:
    def __init__(self, registry: BackendRegistry, *, page_size: int | None = None):
        self._registry = registry
        self._page_size = page_size

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    def backends(self) -> dict[str, str]:
        return self._registry.describe()

    def locate(self, name: str, path: str) -> tuple[BackendRegistration, str]:
        """Return the backend and driver key for ``path`` inside backend ``name``."""
        registration = self._registry.get(name)
        return self._registry.dispatch(registration.identifier(path))

    def _driver(self, name: str, path: str) -> tuple[StorageDriver, str]:
        registration, key = self.locate(name, path)
        return registration.driver, key

    def get_object(self, name: str, path: str) -> ObjectRecord:
        driver, key = self._driver(name, path)
        return driver.metadata(key).with_name(name)

    def read_object(self, name: str, path: str) -> tuple[BinaryIO, ObjectRecord]:
        driver, key = self._driver(name, path)
        stream, record = driver.read(key)
        return stream, record.with_name(name)

    def create_object(
        self,
        name: str,
        path: str,
        body: BinaryIO,
        *,
        content_type: str | None = None,
        modified: datetime | None = None,
        meta: Mapping[str, str] | None = None,
        if_not_exists: bool = False,
    ) -> ObjectRecord:
        driver, key = self._driver(name, path)
        if not key or key.endswith("/"):
            raise InvalidArgumentError(f"Object path must name a file: {path!r}")
        record = driver.create(
            key,
            body,
            content_type=content_type,
            modified=modified,
            meta=meta,
            if_not_exists=if_not_exists,
        )
        BYTES_UPLOADED.labels(name).inc(record.size)
        logger.info(
            "object_created",
            extra={"extra": {"backend": name, "key": key, "size": record.size}},
        )
        return record.with_name(name)

    def list_objects(
        self,
        name: str,
        path: str = "",
        *,
        recursive: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> ListResult:
        """List the object at ``path``, or the entries under it.

        ``limit=0`` returns only the count. ``limit=None`` means the maximum
        page size.
        """
        driver, key = self._driver(name, path)
        target = resolve_target(driver, key)
        if target.record is not None:
            matches = [target.record]
        else:
            matches = list(
                iter_prefix(
                    driver,
                    target.key,
                    recursive=recursive,
                    page_size=self._page_size,
                )
            )

        if limit is None or limit > MAX_LIST_LIMIT:
            limit = MAX_LIST_LIMIT
        start = min(max(offset, 0), len(matches))
        page = matches[start : start + max(limit, 0)]
        return ListResult(
            name=name,
            count=len(matches),
            items=[record.with_name(name) for record in page],
        )

    def delete_object(self, name: str, path: str) -> ObjectRecord:
        driver, key = self._driver(name, path)
        record = driver.metadata(key)
        driver.delete(key)
        OBJECTS_DELETED.labels(name).inc()
        logger.info("object_deleted", extra={"extra": {"backend": name, "key": key}})
        return record.with_name(name)

    def delete_objects(
        self,
        name: str,
        path: str,
        *,
        recursive: bool,
        cancel: threading.Event | None = None,
    ) -> DeleteResult:
        driver, key = self._driver(name, path)
        deleted = delete_prefix(
            driver,
            key,
            recursive=recursive,
            page_size=self._page_size,
            cancel=cancel,
        )
        if deleted:
            OBJECTS_DELETED.labels(name).inc(len(deleted))
        logger.info(
            "objects_deleted",
            extra={
                "extra": {
                    "backend": name,
                    "key": key,
                    "recursive": recursive,
                    "count": len(deleted),
                }
            },
        )
        return DeleteResult(name=name, items=[record.with_name(name) for record in deleted])


__all__ = ["DeleteResult", "ListResult", "MAX_LIST_LIMIT", "ObjectService"]
