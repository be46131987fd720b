"""Storage driver protocol and data types.

Every backend (filesystem, memory, S3-compatible) implements the same small
capability set defined by :class:`StorageDriver`. Keys are driver-relative
paths without a leading separator; ``""`` is the backend root.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import BinaryIO, Mapping, Protocol, Sequence

from filer.common.errors import InvalidArgumentError, StorageError

ATTR_LAST_MODIFIED = "last-modified"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class ObjectRecord:
    """Metadata of one stored object, or of a synthesized directory entry."""

    key: str
    size: int = 0
    modified: datetime | None = None
    content_type: str | None = None
    etag: str | None = None
    meta: Mapping[str, str] = field(default_factory=dict)
    is_dir: bool = False
    name: str | None = None

    @property
    def path(self) -> str:
        return "/" + self.key

    def with_name(self, name: str) -> "ObjectRecord":
        return replace(self, name=name)


@dataclass(frozen=True, slots=True)
class UploadPart:
    """A committed part of a multipart upload."""

    part_number: int
    etag: str
    size: int


@dataclass(frozen=True, slots=True)
class ListPage:
    """One page of a listing; ``next_token`` is None on the last page."""

    entries: list[ObjectRecord]
    next_token: str | None = None


class StorageDriver(Protocol):
    """Protocol defining the interface for storage backends.

    Implementations map their native errors to the ``filer.common.errors``
    taxonomy so callers never branch on backend-specific exceptions.
    """

    max_delete_batch: int | None

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
        """Write ``body`` to ``key``, replacing any existing object.

        Args:
            key: Target key.
            body: Readable binary stream; read until EOF.
            content_type: MIME type to store with the object.
            modified: Modification time recorded under ``last-modified``.
            meta: User metadata; keys are lower-cased.
            if_not_exists: Fail instead of replacing an existing object.

        Returns:
            The record of the committed object.

        Raises:
            ConflictError: If ``if_not_exists`` is set and the key exists, or
                the key collides with a directory.
            StorageError: If the write fails. Partial data is removed first.
        """
        ...

    def metadata(self, key: str) -> ObjectRecord:
        """Return the record for ``key``.

        Raises:
            ObjectNotFoundError: If no object is stored at ``key``.
        """
        ...

    def read(self, key: str) -> tuple[BinaryIO, ObjectRecord]:
        """Open ``key`` for reading. The caller must close the stream.

        Raises:
            ObjectNotFoundError: If no object is stored at ``key``.
        """
        ...

    def list_page(
        self,
        prefix: str,
        *,
        delimiter: str | None = None,
        token: str | None = None,
        limit: int | None = None,
    ) -> ListPage:
        """List keys starting with ``prefix`` in key order.

        Args:
            prefix: Key prefix; ``""`` lists the whole backend.
            delimiter: When set, only immediate children are returned and
                deeper keys are grouped into ``is_dir`` entries.
            token: Opaque continuation token from a previous page.
            limit: Maximum number of entries in this page; must be positive.
        """
        ...

    def delete(self, key: str) -> None:
        """Delete exactly one object.

        Raises:
            ObjectNotFoundError: If no object is stored at ``key``.
        """
        ...

    def delete_many(self, keys: Sequence[str]) -> list[str]:
        """Delete ``keys`` in one call, ignoring keys that do not exist.

        Returns:
            The keys that were deleted.
        """
        ...

    def describe(self) -> str:
        """Return the backend URL without credentials."""
        ...

    def close(self) -> None:
        ...


def check_page_limit(limit: int | None) -> None:
    if limit is not None and limit < 1:
        raise InvalidArgumentError(f"Page limit must be positive, got {limit}")


def prepare_meta(
    meta: Mapping[str, str] | None, modified: datetime | None
) -> dict[str, str]:
    """Lower-case metadata keys and record ``modified`` when given."""
    result = {str(key).lower(): str(value) for key, value in (meta or {}).items()}
    if modified is not None:
        result[ATTR_LAST_MODIFIED] = format_timestamp(modified)
    return result


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="seconds")
    return text.replace("+00:00", "Z")


def effective_modified(
    stored: datetime | None, meta: Mapping[str, str]
) -> datetime | None:
    """Prefer a ``last-modified`` metadata value over the storage write time."""
    raw = meta.get(ATTR_LAST_MODIFIED)
    if not raw:
        return stored
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return stored
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "ATTR_LAST_MODIFIED",
    "DEFAULT_CONTENT_TYPE",
    "ListPage",
    "ObjectRecord",
    "StorageDriver",
    "StorageError",
    "UploadPart",
    "check_page_limit",
    "effective_modified",
    "format_timestamp",
    "prepare_meta",
]
