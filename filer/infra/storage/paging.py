"""Listing pages over a sorted key space.

Used by the drivers that have no native delimiter support (memory,
filesystem). Directory entries are synthesized from the delimiter the same
way S3 builds ``CommonPrefixes``.
"""

from __future__ import annotations

from typing import Callable, Iterable

from filer.infra.storage.client import ListPage, ObjectRecord, check_page_limit


def paginate_keys(
    keys: Iterable[str],
    *,
    prefix: str,
    load: Callable[[str], ObjectRecord],
    delimiter: str | None = None,
    token: str | None = None,
    limit: int | None = None,
) -> ListPage:
    """Build one page from ``keys``, which must be sorted.

    The continuation token is the last key (or directory key) returned. A
    token that names a directory also skips everything beneath it.
    """
    check_page_limit(limit)
    entries: list[ObjectRecord] = []
    last_dir: str | None = None
    for key in keys:
        if not key.startswith(prefix):
            continue
        if token is not None:
            if key <= token:
                continue
            if delimiter and token.endswith(delimiter) and key.startswith(token):
                continue

        if delimiter:
            rest = key[len(prefix) :]
            index = rest.find(delimiter)
            if index >= 0:
                dir_key = prefix + rest[: index + len(delimiter)]
                if dir_key == last_dir:
                    continue
                if limit is not None and len(entries) >= limit:
                    return ListPage(entries=entries, next_token=entries[-1].key)
                last_dir = dir_key
                entries.append(ObjectRecord(key=dir_key, is_dir=True))
                continue

        if limit is not None and len(entries) >= limit:
            return ListPage(entries=entries, next_token=entries[-1].key)
        entries.append(load(key))

    return ListPage(entries=entries, next_token=None)
