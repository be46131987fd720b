"""S3-compatible storage driver.

Works with AWS S3, MinIO and other S3-compatible services. Small objects are
written with a single ``put_object``; larger streams go through the multipart
pipeline.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, BinaryIO, Mapping, Sequence

from botocore.exceptions import BotoCoreError, ClientError

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
    UploadPart,
    check_page_limit,
    effective_modified,
    prepare_meta,
)
from filer.infra.storage.multipart import run_multipart_upload
from filer.infra.storage.streams import read_chunk

if TYPE_CHECKING:
    from filer.common.config import Settings

logger = logging.getLogger("filer.storage")

# DeleteObjects accepts at most 1000 keys per request
S3_MAX_DELETE_BATCH = 1000
S3_MAX_LIST_KEYS = 1000

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "NoSuchUpload", "404"}
_FORBIDDEN_CODES = {"AccessDenied", "Forbidden", "403"}
_CONFLICT_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412", "409"}
_INVALID_CODES = {
    "InvalidArgument",
    "InvalidRequest",
    "InvalidPart",
    "InvalidPartOrder",
    "EntityTooSmall",
    "KeyTooLongError",
}


class S3StorageDriver:
    """Storage driver over one S3 bucket, optionally below a key prefix."""

    max_delete_batch: int | None = S3_MAX_DELETE_BATCH

    def __init__(
        self,
        *,
        settings: "Settings",
        bucket: str,
        key_prefix: str = "",
        url: str | None = None,
    ) -> None:
        """Initialize the driver with connection settings.

        Args:
            settings: Application settings containing S3 configuration.
            bucket: Bucket holding the objects.
            key_prefix: Prefix prepended to every key inside the bucket.
            url: Backend URL reported by :meth:`describe`.
        """
        if not bucket:
            raise ConfigurationError("S3 backend requires a bucket name")
        self._settings = settings
        self._bucket = bucket
        prefix = key_prefix.strip("/")
        self._key_prefix = f"{prefix}/" if prefix else ""
        self._part_size = settings.STORAGE_PART_SIZE_BYTES
        self._url = url or f"s3://{bucket}/{self._key_prefix}"
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        try:
            import boto3
            from botocore.config import Config
        except ImportError as exc:
            raise ConfigurationError(
                "boto3 and botocore are required for the S3 backend. "
                "Install with: pip install boto3"
            ) from exc

        addressing_style = (settings.S3_ADDRESSING_STYLE or "path").strip().lower()
        config = Config(s3={"addressing_style": addressing_style})

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

    def _key(self, key: str) -> str:
        return self._key_prefix + key

    def _relative(self, full_key: str) -> str:
        return full_key[len(self._key_prefix) :]

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
        if not key or key.endswith("/"):
            raise InvalidArgumentError(f"Invalid object key: {key!r}")
        if if_not_exists and self._exists(key):
            raise ConflictError(f"Object already exists: {key}")

        stored_meta = prepare_meta(meta, modified)
        first = read_chunk(body, self._part_size)
        if len(first) < self._part_size:
            params: dict[str, Any] = {
                "Bucket": self._bucket,
                "Key": self._key(key),
                "Body": first,
                "Metadata": stored_meta,
            }
            if content_type:
                params["ContentType"] = content_type
            if if_not_exists:
                params["IfNoneMatch"] = "*"
            try:
                self._client.put_object(**params)
            except (ClientError, BotoCoreError) as exc:
                raise _map_error(exc, "put object", key) from exc
            return self.metadata(key)

        session = _S3MultipartSession(
            self,
            key,
            content_type=content_type,
            meta=stored_meta,
            if_not_exists=if_not_exists,
        )
        return run_multipart_upload(session, body, self._part_size, first_chunk=first)

    def _exists(self, key: str) -> bool:
        try:
            self.metadata(key)
        except ObjectNotFoundError:
            return False
        return True

    def metadata(self, key: str) -> ObjectRecord:
        if not key:
            raise ObjectNotFoundError("Object not found: backend root")
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=self._key(key))
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "get object metadata", key) from exc
        return self._record(key, response, size_field="ContentLength")

    def read(self, key: str) -> tuple[BinaryIO, ObjectRecord]:
        if not key:
            raise ObjectNotFoundError("Object not found: backend root")
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=self._key(key))
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "read object", key) from exc
        return response["Body"], self._record(key, response, size_field="ContentLength")

    @staticmethod
    def _record(key: str, response: Mapping[str, Any], *, size_field: str) -> ObjectRecord:
        meta = {str(k).lower(): str(v) for k, v in (response.get("Metadata") or {}).items()}
        size = response.get(size_field)
        return ObjectRecord(
            key=key,
            size=int(size) if size is not None else 0,
            modified=effective_modified(response.get("LastModified"), meta),
            content_type=response.get("ContentType") or None,
            etag=_strip_etag(response.get("ETag")),
            meta=meta,
        )

    def list_page(
        self,
        prefix: str,
        *,
        delimiter: str | None = None,
        token: str | None = None,
        limit: int | None = None,
    ) -> ListPage:
        check_page_limit(limit)
        params: dict[str, Any] = {
            "Bucket": self._bucket,
            "Prefix": self._key(prefix),
            "MaxKeys": min(limit or S3_MAX_LIST_KEYS, S3_MAX_LIST_KEYS),
        }
        if delimiter:
            params["Delimiter"] = delimiter
        if token:
            params["ContinuationToken"] = token
        try:
            response = self._client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "list objects", prefix) from exc

        entries = [
            self._record(self._relative(item["Key"]), item, size_field="Size")
            for item in response.get("Contents") or []
        ]
        entries.extend(
            ObjectRecord(key=self._relative(item["Prefix"]), is_dir=True)
            for item in response.get("CommonPrefixes") or []
        )
        entries.sort(key=lambda record: record.key)

        next_token = None
        if response.get("IsTruncated"):
            next_token = response.get("NextContinuationToken")
        return ListPage(entries=entries, next_token=next_token)

    def delete(self, key: str) -> None:
        # DeleteObject succeeds for missing keys, so check first
        self.metadata(key)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=self._key(key))
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "delete object", key) from exc

    def delete_many(self, keys: Sequence[str]) -> list[str]:
        deleted: list[str] = []
        for start in range(0, len(keys), S3_MAX_DELETE_BATCH):
            batch = list(keys[start : start + S3_MAX_DELETE_BATCH])
            try:
                response = self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={
                        "Objects": [{"Key": self._key(key)} for key in batch],
                        "Quiet": True,
                    },
                )
            except (ClientError, BotoCoreError) as exc:
                raise _map_error(exc, "delete objects", batch[0]) from exc

            failed: set[str] = set()
            problems: list[str] = []
            for error in response.get("Errors") or []:
                relative = self._relative(error.get("Key", ""))
                failed.add(relative)
                if error.get("Code") not in _NOT_FOUND_CODES:
                    problems.append(f"{relative}: {error.get('Message') or error.get('Code')}")
            deleted.extend(key for key in batch if key not in failed)
            if problems:
                raise InternalStorageError(
                    f"Failed to delete objects: {'; '.join(problems)}"
                )
        return deleted

    def describe(self) -> str:
        return self._url

    def close(self) -> None:
        self._client.close()


class _S3MultipartSession:
    """Multipart upload session for one key."""

    def __init__(
        self,
        driver: S3StorageDriver,
        key: str,
        *,
        content_type: str | None,
        meta: Mapping[str, str],
        if_not_exists: bool,
    ) -> None:
        self._driver = driver
        self._client = driver._client
        self._bucket = driver._bucket
        self._key = key
        self._object_key = driver._key(key)
        self._if_not_exists = if_not_exists

        params: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": self._object_key,
            "Metadata": dict(meta),
        }
        if content_type:
            params["ContentType"] = content_type
        try:
            response = self._client.create_multipart_upload(**params)
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "create multipart upload", key) from exc

        upload_id = response.get("UploadId")
        if not upload_id:
            raise InternalStorageError("S3 response missing UploadId")
        self.upload_id = str(upload_id)

    def upload_part(self, part_number: int, data: bytes) -> UploadPart:
        try:
            response = self._client.upload_part(
                Bucket=self._bucket,
                Key=self._object_key,
                UploadId=self.upload_id,
                PartNumber=int(part_number),
                Body=data,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "upload part", self._key) from exc
        return UploadPart(
            part_number=part_number,
            etag=str(response.get("ETag") or ""),
            size=len(data),
        )

    def complete(self, parts: Sequence[UploadPart]) -> ObjectRecord:
        params: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": self._object_key,
            "UploadId": self.upload_id,
            "MultipartUpload": {
                "Parts": [
                    {"ETag": part.etag, "PartNumber": int(part.part_number)}
                    for part in sorted(parts, key=lambda p: p.part_number)
                ]
            },
        }
        if self._if_not_exists:
            params["IfNoneMatch"] = "*"
        try:
            self._client.complete_multipart_upload(**params)
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "complete multipart upload", self._key) from exc
        return self._driver.metadata(self._key)

    def abort(self) -> None:
        try:
            self._client.abort_multipart_upload(
                Bucket=self._bucket,
                Key=self._object_key,
                UploadId=self.upload_id,
            )
        except (ClientError, BotoCoreError) as exc:
            raise _map_error(exc, "abort multipart upload", self._key) from exc


def _strip_etag(value: str | None) -> str | None:
    if not value:
        return None
    return value.strip().strip('"') or None


def _map_error(exc: Exception, action: str, key: str) -> StorageError:
    if not isinstance(exc, ClientError):
        return InternalStorageError(f"Failed to {action} {key}: {exc}")

    error = exc.response.get("Error") or {}
    code = str(error.get("Code") or "")
    status = (exc.response.get("ResponseMetadata") or {}).get("HTTPStatusCode")

    if code in _NOT_FOUND_CODES or status == 404:
        return ObjectNotFoundError(f"Object not found: {key}")
    if code in _FORBIDDEN_CODES or status == 403:
        return PermissionDeniedError(f"Permission denied: {key}")
    if code in _CONFLICT_CODES or status in (409, 412):
        return ConflictError(f"Failed to {action} {key}: {exc}")
    if code in _INVALID_CODES or status == 400:
        return InvalidArgumentError(f"Failed to {action} {key}: {exc}")
    return InternalStorageError(f"Failed to {action} {key}: {exc}")


__all__ = ["S3StorageDriver", "S3_MAX_DELETE_BATCH"]
