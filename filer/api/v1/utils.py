from __future__ import annotations

import json
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Mapping
from urllib.parse import quote

from fastapi import HTTPException

from filer.api.v1.schemas.objects import ObjectOut
from filer.common.errors import StorageError
from filer.infra.storage.client import ObjectRecord

META_HEADER_PREFIX = "x-meta-"
PATH_HEADER = "X-Path"
OBJECT_META_HEADER = "X-Object-Meta"


def extract_meta(headers: Mapping[str, str]) -> dict[str, str]:
    """Collect ``X-Meta-<key>`` headers into lower-cased metadata."""
    meta: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered.startswith(META_HEADER_PREFIX) and len(lowered) > len(META_HEADER_PREFIX):
            meta[lowered[len(META_HEADER_PREFIX) :]] = value
    return meta


def parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def quote_etag(etag: str) -> str:
    if etag.startswith('"') or etag.startswith("W/"):
        return etag
    return f'"{etag}"'


def object_to_json(record: ObjectRecord) -> dict:
    return ObjectOut.model_validate(record).model_dump(mode="json", exclude_none=True)


def object_headers(record: ObjectRecord, content_type: str) -> dict[str, str]:
    """Response headers describing ``record``."""
    headers: dict[str, str] = {"Content-Type": content_type}
    filename = record.key.rstrip("/").rsplit("/", 1)[-1]
    if filename:
        headers["Content-Disposition"] = (
            f"inline; filename*=utf-8''{quote(filename, safe='')}"
            if not filename.isascii() or '"' in filename
            else f'inline; filename="{filename}"'
        )
    headers[PATH_HEADER] = quote(record.path, safe="/")
    if record.etag:
        headers["ETag"] = quote_etag(record.etag)
    headers["Content-Length"] = str(record.size)
    if record.modified is not None:
        headers["Last-Modified"] = format_http_date(record.modified)
    headers[OBJECT_META_HEADER] = json.dumps(
        object_to_json(record), ensure_ascii=True, separators=(",", ":")
    )
    for key, value in record.meta.items():
        headers[f"X-Meta-{key}"] = value
    return headers


def storage_http_exception(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"message": str(exc), "error_code": exc.error_code},
    )
