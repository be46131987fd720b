"""Paginated listing and recursive delete over a resolved prefix."""

from __future__ import annotations

import logging
import threading
from typing import Iterator, Sequence

from filer.common.errors import ObjectNotFoundError, OperationCancelledError
from filer.domain.identifier import SEPARATOR
from filer.infra.storage.client import ObjectRecord, StorageDriver
from filer.app.services.resolution import resolve_target

logger = logging.getLogger("filer.storage")

# some backends list eventually-consistently; repeat until a pass is empty
MAX_DELETE_PASSES = 10


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled")


def iter_prefix(
    driver: StorageDriver,
    prefix: str,
    *,
    recursive: bool = True,
    page_size: int | None = None,
    cancel: threading.Event | None = None,
) -> Iterator[ObjectRecord]:
    """Yield every entry under ``prefix``, following continuation tokens.

    Non-recursive listings use the separator as delimiter, so only
    immediate children (and grouped directory entries) are returned.
    """
    delimiter = None if recursive else SEPARATOR
    token: str | None = None
    while True:
        _check_cancelled(cancel)
        page = driver.list_page(
            prefix, delimiter=delimiter, token=token, limit=page_size
        )
        for entry in page.entries:
            if entry.key == prefix:
                continue
            yield entry
        token = page.next_token
        if not token:
            return


def delete_batch(driver: StorageDriver, keys: Sequence[str]) -> list[str]:
    """Delete ``keys`` in chunks no larger than the driver's batch limit."""
    if not keys:
        return []
    size = driver.max_delete_batch or len(keys)
    deleted: list[str] = []
    for start in range(0, len(keys), size):
        deleted.extend(driver.delete_many(keys[start : start + size]))
    return deleted


def delete_prefix(
    driver: StorageDriver,
    key: str,
    *,
    recursive: bool = True,
    page_size: int | None = None,
    cancel: threading.Event | None = None,
) -> list[ObjectRecord]:
    """Delete the object at ``key``, or everything under it when it is a prefix.

    Returns the deleted records in the order they were removed. Objects that
    disappear concurrently are skipped. Directory entries of a non-recursive
    listing are never deleted.
    """
    _check_cancelled(cancel)
    target = resolve_target(driver, key)
    if target.record is not None:
        try:
            driver.delete(target.key)
        except ObjectNotFoundError:
            return []
        return [target.record]

    prefix = target.key
    delimiter = None if recursive else SEPARATOR
    deleted: list[ObjectRecord] = []
    for attempt in range(1, MAX_DELETE_PASSES + 1):
        removed = 0
        token: str | None = None
        while True:
            _check_cancelled(cancel)
            page = driver.list_page(
                prefix, delimiter=delimiter, token=token, limit=page_size
            )
            candidates = {
                entry.key: entry
                for entry in page.entries
                if not entry.is_dir and entry.key != prefix
            }
            for removed_key in delete_batch(driver, list(candidates)):
                deleted.append(candidates[removed_key])
                removed += 1
            token = page.next_token
            if not token:
                break
        logger.debug(
            "delete_prefix_pass",
            extra={"extra": {"prefix": prefix, "pass": attempt, "deleted": removed}},
        )
        if removed == 0:
            break
    return deleted


__all__ = ["MAX_DELETE_PASSES", "delete_batch", "delete_prefix", "iter_prefix"]
