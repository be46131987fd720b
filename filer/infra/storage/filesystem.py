"""Local filesystem storage driver.

Each object is a regular file under the backend root. Content type, entity
tag and user metadata are kept in a ``<file>.attrs`` JSON sidecar. Writes go
to a temporary file in the destination directory and are renamed into place,
so readers never observe a partially written object.
"""

from __future__ import annotations

import errno
import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Mapping, Sequence

from filer.common.errors import (
    ConfigurationError,
    ConflictError,
    InternalStorageError,
    InvalidArgumentError,
    ObjectNotFoundError,
    PermissionDeniedError,
    StorageError,
)
from filer.infra.storage.client import (
    ListPage,
    ObjectRecord,
    effective_modified,
    prepare_meta,
)
from filer.infra.storage.paging import paginate_keys

logger = logging.getLogger("filer.storage")

ATTRS_SUFFIX = ".attrs"
TEMP_PREFIX = ".filer-"
TEMP_SUFFIX = ".tmp"

_COPY_CHUNK_BYTES = 1024 * 1024


class FilesystemStorageDriver:
    """Storage driver rooted at a local directory."""

    max_delete_batch: int | None = None

    def __init__(self, *, url: str, root: str | Path, create_dirs: bool = True) -> None:
        self._url = url
        self._root = Path(root).resolve()
        if not self._root.is_dir():
            if not create_dirs:
                raise ConfigurationError(f"Backend root does not exist: {self._root}")
            self._root.mkdir(parents=True, exist_ok=True)
        logger.debug(
            "filesystem_backend_ready",
            extra={"extra": {"backend": url, "root": str(self._root)}},
        )

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if path != self._root and self._root not in path.parents:
            raise InvalidArgumentError(f"Key escapes backend root: {key!r}")
        return path

    @staticmethod
    def _attrs_path(path: Path) -> Path:
        return path.with_name(path.name + ATTRS_SUFFIX)

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
        path = self._path(key)
        if path.is_dir():
            raise ConflictError(f"Cannot write object over a directory: {key}")
        if if_not_exists and path.exists():
            raise ConflictError(f"Object already exists: {key}")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise _map_os_error(exc, key) from exc

        digest = hashlib.md5()
        try:
            fd, temp_name = tempfile.mkstemp(
                dir=path.parent, prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX
            )
        except OSError as exc:
            raise _map_os_error(exc, key) from exc

        temp_path = Path(temp_name)
        attrs_temp: Path | None = None
        created = False
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in iter(lambda: body.read(_COPY_CHUNK_BYTES), b""):
                    handle.write(chunk)
                    digest.update(chunk)
            attrs_temp = self._stage_attrs(
                path,
                {
                    "content_type": content_type or None,
                    "etag": digest.hexdigest(),
                    "meta": prepare_meta(meta, modified),
                },
            )
            self._commit(temp_path, path, key, if_not_exists=if_not_exists)
            created = if_not_exists
            os.replace(attrs_temp, self._attrs_path(path))
        except BaseException as exc:
            temp_path.unlink(missing_ok=True)
            if attrs_temp is not None:
                attrs_temp.unlink(missing_ok=True)
            # only an object this call linked into place may be removed
            if created:
                path.unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise _map_os_error(exc, key) from exc
            raise
        return self.metadata(key)

    @staticmethod
    def _commit(temp_path: Path, path: Path, key: str, *, if_not_exists: bool) -> None:
        if not if_not_exists:
            os.replace(temp_path, path)
            return
        # link() refuses to replace an existing file
        try:
            os.link(temp_path, path)
        except FileExistsError as exc:
            raise ConflictError(f"Object already exists: {key}") from exc
        temp_path.unlink()

    def _stage_attrs(self, path: Path, attrs: Mapping[str, Any]) -> Path:
        """Write the sidecar to a temporary file next to ``path``."""
        fd, temp_name = tempfile.mkstemp(
            dir=path.parent, prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(attrs, handle, ensure_ascii=False)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return Path(temp_name)

    def _read_attrs(self, path: Path) -> dict[str, Any]:
        attrs_path = self._attrs_path(path)
        try:
            with attrs_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning(
                "filesystem_attrs_unreadable",
                extra={"extra": {"path": str(attrs_path), "error": str(exc)}},
            )
            return {}
        return data if isinstance(data, dict) else {}

    def _record(self, key: str, path: Path) -> ObjectRecord:
        try:
            stat = path.stat()
        except OSError as exc:
            raise _map_os_error(exc, key) from exc
        attrs = self._read_attrs(path)
        meta = {str(k): str(v) for k, v in (attrs.get("meta") or {}).items()}
        etag = attrs.get("etag") or _file_md5(path)
        written = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return ObjectRecord(
            key=key,
            size=stat.st_size,
            modified=effective_modified(written, meta),
            content_type=attrs.get("content_type") or None,
            etag=etag,
            meta=meta,
        )

    def metadata(self, key: str) -> ObjectRecord:
        if not key or _is_reserved(key):
            raise ObjectNotFoundError(f"Object not found: {key}")
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(f"Object not found: {key}")
        return self._record(key, path)

    def read(self, key: str) -> tuple[BinaryIO, ObjectRecord]:
        record = self.metadata(key)
        try:
            handle = self._path(key).open("rb")
        except OSError as exc:
            raise _map_os_error(exc, key) from exc
        return handle, record

    def list_page(
        self,
        prefix: str,
        *,
        delimiter: str | None = None,
        token: str | None = None,
        limit: int | None = None,
    ) -> ListPage:
        start = self._root
        if "/" in prefix:
            start = self._path(prefix.rsplit("/", 1)[0])
        keys = sorted(key for key in self._walk(start) if key.startswith(prefix))
        return paginate_keys(
            keys,
            prefix=prefix,
            load=lambda key: self._record(key, self._root / key),
            delimiter=delimiter,
            token=token,
            limit=limit,
        )

    def _walk(self, start: Path):
        if not start.is_dir():
            return
        for dirpath, dirnames, filenames in os.walk(start):
            dirnames.sort()
            base = Path(dirpath).relative_to(self._root).as_posix()
            for filename in filenames:
                if _is_reserved(filename):
                    continue
                yield filename if base == "." else f"{base}/{filename}"

    def delete(self, key: str) -> None:
        if not key or _is_reserved(key):
            raise ObjectNotFoundError(f"Object not found: {key}")
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(f"Object not found: {key}")
        try:
            path.unlink()
            self._attrs_path(path).unlink(missing_ok=True)
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(f"Object not found: {key}") from exc
        except OSError as exc:
            raise _map_os_error(exc, key) from exc
        self._prune(path.parent)

    def _prune(self, directory: Path) -> None:
        """Remove empty directories between ``directory`` and the root."""
        while directory != self._root and self._root in directory.parents:
            try:
                directory.rmdir()
            except OSError as exc:
                if exc.errno in (errno.ENOTEMPTY, errno.EEXIST, errno.ENOENT):
                    return
                raise _map_os_error(exc, str(directory)) from exc
            directory = directory.parent

    def delete_many(self, keys: Sequence[str]) -> list[str]:
        deleted: list[str] = []
        for key in keys:
            try:
                self.delete(key)
            except ObjectNotFoundError:
                continue
            deleted.append(key)
        return deleted

    def describe(self) -> str:
        return self._url

    def close(self) -> None:
        return None


def _check_object_key(key: str) -> None:
    if not key or key.endswith("/"):
        raise InvalidArgumentError(f"Invalid object key: {key!r}")
    if _is_reserved(key.rsplit("/", 1)[-1]):
        raise InvalidArgumentError(f"Reserved object name: {key!r}")


def _is_reserved(name: str) -> bool:
    name = name.rsplit("/", 1)[-1]
    if name.endswith(ATTRS_SUFFIX):
        return True
    return name.startswith(TEMP_PREFIX) and name.endswith(TEMP_SUFFIX)


def _file_md5(path: Path) -> str | None:
    digest = hashlib.md5()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_COPY_CHUNK_BYTES), b""):
                digest.update(chunk)
    except OSError:
        return None
    return digest.hexdigest()


def _map_os_error(exc: OSError, key: str) -> StorageError:
    if isinstance(exc, FileNotFoundError):
        return ObjectNotFoundError(f"Object not found: {key}")
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"Permission denied: {key}")
    if isinstance(exc, (IsADirectoryError, NotADirectoryError, FileExistsError)):
        return ConflictError(f"Path conflicts with existing entry: {key}")
    if exc.errno == errno.EINVAL:
        return InvalidArgumentError(f"Invalid key: {key}")
    return InternalStorageError(f"Failed to access {key}: {exc}")


__all__ = ["FilesystemStorageDriver"]
