from __future__ import annotations

import io

import pytest

from filer.app.services.object_service import MAX_LIST_LIMIT
from filer.common.errors import InvalidArgumentError, NotHandledError, ObjectNotFoundError


def _put(service, path: str, data: bytes = b"x", name: str = "media"):
    return service.create_object(name, path, io.BytesIO(data))


def test_backends(object_service) -> None:
    backends = object_service.backends()
    assert set(backends) == {"media", "files"}
    assert backends["media"] == "mem://media"


def test_create_binds_backend_name(object_service) -> None:
    record = _put(object_service, "/docs/a.txt", b"hello")
    assert record.name == "media"
    assert record.path == "/docs/a.txt"
    assert object_service.get_object("media", "docs/a.txt").size == 5


@pytest.mark.parametrize("path", ["", "/", "/docs/"])
def test_create_requires_a_file_path(object_service, path: str) -> None:
    with pytest.raises(InvalidArgumentError):
        _put(object_service, path)


def test_unknown_backend(object_service) -> None:
    with pytest.raises(NotHandledError):
        object_service.get_object("nope", "/a")


def test_read_object(object_service) -> None:
    _put(object_service, "/a.bin", b"\x00\x01", name="files")
    stream, record = object_service.read_object("files", "/a.bin")
    with stream:
        assert stream.read() == b"\x00\x01"
    assert record.name == "files"


class TestListObjects:
    @pytest.fixture(autouse=True)
    def seed(self, object_service) -> None:
        for path in ("/a", "/b", "/c", "/dir/x", "/dir/y", "/dir/sub/z"):
            _put(object_service, path)

    def test_root_non_recursive(self, object_service) -> None:
        result = object_service.list_objects("media", "/")
        assert result.count == 4
        assert [(item.key, item.is_dir) for item in result.items] == [
            ("a", False),
            ("b", False),
            ("c", False),
            ("dir/", True),
        ]
        assert all(item.name == "media" for item in result.items)

    def test_recursive(self, object_service) -> None:
        result = object_service.list_objects("media", "/dir", recursive=True)
        assert [item.key for item in result.items] == ["dir/sub/z", "dir/x", "dir/y"]

    def test_single_object(self, object_service) -> None:
        result = object_service.list_objects("media", "/dir/x")
        assert result.count == 1
        assert result.items[0].key == "dir/x"

    def test_offset_and_limit_keep_total_count(self, object_service) -> None:
        result = object_service.list_objects(
            "media", "/", recursive=True, offset=2, limit=2
        )
        assert result.count == 6
        assert [item.key for item in result.items] == ["c", "dir/sub/z"]

    def test_limit_zero_returns_count_only(self, object_service) -> None:
        result = object_service.list_objects("media", "/", recursive=True, limit=0)
        assert result.count == 6
        assert result.items == []

    def test_offset_past_end(self, object_service) -> None:
        result = object_service.list_objects("media", "/", offset=100)
        assert result.count == 4
        assert result.items == []

    def test_missing_prefix_is_empty(self, object_service) -> None:
        result = object_service.list_objects("media", "/missing")
        assert result.count == 0


def test_list_limit_is_capped(object_service) -> None:
    for index in range(MAX_LIST_LIMIT + 5):
        _put(object_service, f"/k{index:05d}")
    result = object_service.list_objects("media", "/", limit=MAX_LIST_LIMIT * 2)
    assert result.count == MAX_LIST_LIMIT + 5
    assert len(result.items) == MAX_LIST_LIMIT


def test_delete_object(object_service) -> None:
    _put(object_service, "/a")
    record = object_service.delete_object("media", "/a")
    assert record.key == "a"
    with pytest.raises(ObjectNotFoundError):
        object_service.delete_object("media", "/a")


def test_delete_objects_recursive(object_service) -> None:
    for path in ("/d/1", "/d/2", "/d/e/3", "/keep"):
        _put(object_service, path)
    result = object_service.delete_objects("media", "/d", recursive=True)
    assert result.name == "media"
    assert sorted(item.key for item in result.items) == ["d/1", "d/2", "d/e/3"]
    assert [item.key for item in object_service.list_objects("media", "/", recursive=True).items] == [
        "keep"
    ]
