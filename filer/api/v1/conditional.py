"""Conditional request evaluation (RFC 7232) for object downloads."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from fastapi import status

from filer.api.v1.utils import parse_http_date
from filer.infra.storage.client import ObjectRecord


def _normalize_etag(value: str) -> str:
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"')


def match_etags(header: str, etag: str | None, *, strong: bool) -> bool:
    """Whether ``etag`` matches ``header`` (``*`` or a list of entity tags).

    Strong comparison never matches a weak tag on either side.
    """
    if header.strip() == "*":
        return bool(etag)
    if not etag:
        return False
    if strong and etag.startswith("W/"):
        return False
    stored = _normalize_etag(etag)
    for part in header.split(","):
        part = part.strip()
        if not part or (strong and part.startswith("W/")):
            continue
        if _normalize_etag(part) == stored:
            return True
    return False


def _modified_after(modified: datetime | None, since: datetime) -> bool:
    if modified is None:
        return False
    # HTTP dates carry whole seconds
    return modified.replace(microsecond=0) > since


def evaluate_preconditions(
    headers: Mapping[str, str], record: ObjectRecord
) -> int | None:
    """Return 412 or 304 when a precondition short-circuits, else None.

    Evaluated in order: If-Match, If-Unmodified-Since (only without
    If-Match), If-None-Match, If-Modified-Since (only without If-None-Match).
    """
    if_match = headers.get("if-match")
    if if_match:
        if not match_etags(if_match, record.etag, strong=True):
            return status.HTTP_412_PRECONDITION_FAILED
    else:
        since = parse_http_date(headers.get("if-unmodified-since"))
        if since is not None and _modified_after(record.modified, since):
            return status.HTTP_412_PRECONDITION_FAILED

    if_none_match = headers.get("if-none-match")
    if if_none_match:
        if match_etags(if_none_match, record.etag, strong=False):
            return status.HTTP_304_NOT_MODIFIED
    else:
        since = parse_http_date(headers.get("if-modified-since"))
        if (
            since is not None
            and record.modified is not None
            and not _modified_after(record.modified, since)
        ):
            return status.HTTP_304_NOT_MODIFIED
    return None


__all__ = ["evaluate_preconditions", "match_etags"]
