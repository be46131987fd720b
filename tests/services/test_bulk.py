from __future__ import annotations

import io
import threading
from unittest.mock import MagicMock

import pytest

from filer.app.services.bulk import (
    MAX_DELETE_PASSES,
    delete_batch,
    delete_prefix,
    iter_prefix,
)
from filer.common.errors import ObjectNotFoundError, OperationCancelledError
from filer.infra.storage.client import ListPage, ObjectRecord


def _seed(driver, *keys: str) -> None:
    for key in keys:
        driver.create(key, io.BytesIO(b"x"))


def _keys(driver) -> list[str]:
    return [entry.key for entry in driver.list_page("").entries]


def test_iter_prefix_follows_pages(memory_driver) -> None:
    _seed(memory_driver, "a/1", "a/2", "a/3", "a/b/4", "z")
    keys = [entry.key for entry in iter_prefix(memory_driver, "a/", page_size=2)]
    assert keys == ["a/1", "a/2", "a/3", "a/b/4"]


def test_iter_prefix_non_recursive(memory_driver) -> None:
    _seed(memory_driver, "a/1", "a/b/2", "a/b/3")
    entries = list(iter_prefix(memory_driver, "a/", recursive=False, page_size=1))
    assert [(entry.key, entry.is_dir) for entry in entries] == [
        ("a/1", False),
        ("a/b/", True),
    ]


def test_delete_single_object(memory_driver) -> None:
    _seed(memory_driver, "a", "a2")
    deleted = delete_prefix(memory_driver, "a")
    assert [record.key for record in deleted] == ["a"]
    assert _keys(memory_driver) == ["a2"]


def test_delete_recursive(memory_driver) -> None:
    _seed(memory_driver, "d/1", "d/2", "d/e/3", "dd/4")
    deleted = delete_prefix(memory_driver, "d", page_size=2)
    assert sorted(record.key for record in deleted) == ["d/1", "d/2", "d/e/3"]
    assert _keys(memory_driver) == ["dd/4"]


def test_delete_non_recursive_keeps_subdirectories(memory_driver) -> None:
    _seed(memory_driver, "d/1", "d/2", "d/e/3")
    deleted = delete_prefix(memory_driver, "d/", recursive=False)
    assert sorted(record.key for record in deleted) == ["d/1", "d/2"]
    assert _keys(memory_driver) == ["d/e/3"]


def test_delete_root_removes_everything(memory_driver) -> None:
    _seed(memory_driver, "a", "b/c")
    delete_prefix(memory_driver, "")
    assert _keys(memory_driver) == []


def test_delete_phantom_directory_marker(memory_driver) -> None:
    memory_driver.create("p", io.BytesIO(b""))
    _seed(memory_driver, "p/1")
    deleted = delete_prefix(memory_driver, "p")
    assert [record.key for record in deleted] == ["p/1"]
    # the marker sits outside the prefix and survives
    assert _keys(memory_driver) == ["p"]


def test_delete_missing_prefix_returns_nothing(memory_driver) -> None:
    assert delete_prefix(memory_driver, "nothing/here") == []


def test_object_vanishing_concurrently_is_skipped() -> None:
    driver = MagicMock()
    driver.metadata.return_value = ObjectRecord(key="a", size=1)
    driver.delete.side_effect = ObjectNotFoundError("gone")
    assert delete_prefix(driver, "a") == []


def test_passes_repeat_until_nothing_is_deleted() -> None:
    driver = MagicMock()
    driver.max_delete_batch = None
    driver.list_page.return_value = ListPage(entries=[ObjectRecord(key="d/x", size=1)])
    driver.delete_many.side_effect = lambda keys: list(keys)

    deleted = delete_prefix(driver, "d/")

    # a listing that never drains stops after the pass limit
    assert driver.list_page.call_count == MAX_DELETE_PASSES
    assert len(deleted) == MAX_DELETE_PASSES


def test_cancel_between_pages(memory_driver) -> None:
    _seed(memory_driver, "d/1", "d/2", "d/3")
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelledError):
        delete_prefix(memory_driver, "d/", cancel=cancel)
    assert len(_keys(memory_driver)) == 3


def test_delete_batch_respects_driver_limit() -> None:
    driver = MagicMock()
    driver.max_delete_batch = 2
    driver.delete_many.side_effect = lambda keys: list(keys)
    assert delete_batch(driver, ["a", "b", "c", "d", "e"]) == ["a", "b", "c", "d", "e"]
    assert driver.delete_many.call_count == 3
