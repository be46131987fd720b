"""Decide whether a key names one object or a prefix.

Flat object stores sometimes hold a zero-byte marker object named like a
directory (``photos`` next to ``photos/a.jpg``). Such a marker is a
"phantom directory": the key is treated as a prefix. A zero-byte object
with no children is a real empty object. Listing and bulk delete both go
through :func:`resolve_target` so they agree on every edge case.
"""

from __future__ import annotations

from dataclasses import dataclass

from filer.common.errors import ObjectNotFoundError
from filer.domain.identifier import SEPARATOR
from filer.infra.storage.client import ObjectRecord, StorageDriver


@dataclass(frozen=True, slots=True)
class Target:
    """Outcome of resolving a key.

    ``key`` is the object key when ``record`` is set, otherwise a prefix that
    is either ``""`` (whole backend) or ends with a separator.
    """

    key: str
    record: ObjectRecord | None = None

    @property
    def is_object(self) -> bool:
        return self.record is not None


def as_prefix(key: str) -> str:
    stripped = key.rstrip(SEPARATOR)
    return stripped + SEPARATOR if stripped else ""


def has_children(driver: StorageDriver, key: str) -> bool:
    page = driver.list_page(key + SEPARATOR, limit=1)
    return bool(page.entries)


def resolve_target(driver: StorageDriver, key: str) -> Target:
    # root and explicit prefixes are never looked up as objects
    if key and not key.endswith(SEPARATOR):
        try:
            record = driver.metadata(key)
        except ObjectNotFoundError:
            record = None
        if record is not None:
            if record.size > 0 or not has_children(driver, key):
                return Target(key=key, record=record)
    return Target(key=as_prefix(key))


__all__ = ["Target", "as_prefix", "has_children", "resolve_target"]
