"""Storage driver layer.

This package provides a protocol-based abstraction over object storage
backends: the local filesystem, process memory and S3-compatible services.
"""

from .client import (
    ListPage,
    ObjectRecord,
    StorageDriver,
    StorageError,
    UploadPart,
)
from .filesystem import FilesystemStorageDriver
from .memory import MemoryStorageDriver
from .s3_client import S3StorageDriver

__all__ = [
    "FilesystemStorageDriver",
    "ListPage",
    "MemoryStorageDriver",
    "ObjectRecord",
    "S3StorageDriver",
    "StorageDriver",
    "StorageError",
    "UploadPart",
]
