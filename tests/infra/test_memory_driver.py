from __future__ import annotations

import hashlib
import io
from datetime import datetime, timezone

import pytest

from filer.common.errors import ConflictError, InvalidArgumentError, ObjectNotFoundError
from filer.infra.storage.memory import MemoryStorageDriver


def _put(driver: MemoryStorageDriver, key: str, data: bytes = b"x", **kwargs):
    return driver.create(key, io.BytesIO(data), **kwargs)


def test_create_and_read_back(memory_driver) -> None:
    record = _put(memory_driver, "docs/a.txt", b"hello", content_type="text/plain")
    assert record.size == 5
    assert record.etag == hashlib.md5(b"hello").hexdigest()
    assert record.content_type == "text/plain"

    stream, stored = memory_driver.read("docs/a.txt")
    assert stream.read() == b"hello"
    assert stored == record


def test_modified_and_meta_are_stored(memory_driver) -> None:
    modified = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    record = _put(memory_driver, "a", modified=modified, meta={"Owner": "alice"})
    assert record.modified == modified
    assert record.meta == {"owner": "alice", "last-modified": "2024-05-01T12:30:00Z"}


def test_if_not_exists_refuses_overwrite(memory_driver) -> None:
    _put(memory_driver, "a", b"one")
    with pytest.raises(ConflictError):
        _put(memory_driver, "a", b"two", if_not_exists=True)
    stream, _ = memory_driver.read("a")
    assert stream.read() == b"one"


@pytest.mark.parametrize("key", ["", "dir/"])
def test_rejects_non_object_keys(memory_driver, key: str) -> None:
    with pytest.raises(InvalidArgumentError):
        _put(memory_driver, key)


def test_missing_object(memory_driver) -> None:
    with pytest.raises(ObjectNotFoundError):
        memory_driver.metadata("nope")
    with pytest.raises(ObjectNotFoundError):
        memory_driver.delete("nope")


def test_list_with_delimiter_groups_directories(memory_driver) -> None:
    for key in ("a.txt", "docs/b.txt", "docs/c/d.txt", "e.txt"):
        _put(memory_driver, key)

    page = memory_driver.list_page("", delimiter="/")
    assert [(entry.key, entry.is_dir) for entry in page.entries] == [
        ("a.txt", False),
        ("docs/", True),
        ("e.txt", False),
    ]

    page = memory_driver.list_page("docs/")
    assert [entry.key for entry in page.entries] == ["docs/b.txt", "docs/c/d.txt"]


def test_list_pages_follow_tokens(memory_driver) -> None:
    for index in range(5):
        _put(memory_driver, f"k{index}")

    seen: list[str] = []
    token = None
    while True:
        page = memory_driver.list_page("", token=token, limit=2)
        seen.extend(entry.key for entry in page.entries)
        token = page.next_token
        if not token:
            break
    assert seen == ["k0", "k1", "k2", "k3", "k4"]


def test_empty_object_round_trip(memory_driver) -> None:
    record = _put(memory_driver, "empty", b"", content_type="application/x-foo")
    stream, stored = memory_driver.read("empty")
    assert stream.read() == b""
    assert stored.size == 0
    assert stored.content_type == "application/x-foo"
    assert stored.etag == record.etag == hashlib.md5(b"").hexdigest()


@pytest.mark.parametrize("limit", [0, -1])
def test_list_rejects_non_positive_limit(memory_driver, limit: int) -> None:
    _put(memory_driver, "a")
    with pytest.raises(InvalidArgumentError):
        memory_driver.list_page("", limit=limit)


def test_delete_many_ignores_missing(memory_driver) -> None:
    _put(memory_driver, "a")
    _put(memory_driver, "b")
    assert memory_driver.delete_many(["a", "missing", "b"]) == ["a", "b"]
    assert memory_driver.list_page("").entries == []
