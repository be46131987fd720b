from __future__ import annotations

import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ["FILER_BACKENDS"] = "mem://media"
os.environ["ENABLE_METRICS"] = "true"
os.environ["API_KEY_ENABLED"] = "false"
os.environ["AUTH_ENABLED"] = "false"

from filer.common.config import get_settings  # noqa: E402

get_settings.cache_clear()  # type: ignore[attr-defined]

from filer.app.services.object_service import ObjectService  # noqa: E402
from filer.app.services.registry import BackendRegistry  # noqa: E402
from filer.domain.identifier import Identifier  # noqa: E402
from filer.infra.storage.filesystem import FilesystemStorageDriver  # noqa: E402
from filer.infra.storage.memory import MemoryStorageDriver  # noqa: E402
from filer.main import create_app  # noqa: E402


@pytest.fixture
def memory_driver() -> MemoryStorageDriver:
    return MemoryStorageDriver(url="mem://media")


@pytest.fixture
def fs_root(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def fs_driver(fs_root: Path) -> FilesystemStorageDriver:
    return FilesystemStorageDriver(url=f"file://files{fs_root}", root=fs_root)


@pytest.fixture
def registry(memory_driver, fs_driver) -> BackendRegistry:
    registry = BackendRegistry()
    registry.register("media", "mem://media", memory_driver)
    registry.register("files", Identifier(scheme="file", host="files"), fs_driver)
    return registry


@pytest.fixture
def object_service(registry) -> ObjectService:
    return ObjectService(registry, page_size=2)


@pytest.fixture
def app(registry):
    get_settings.cache_clear()  # type: ignore[attr-defined]
    return create_app(registry=registry)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
