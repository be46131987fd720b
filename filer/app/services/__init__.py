from .bulk import MAX_DELETE_PASSES, delete_prefix, iter_prefix
from .object_service import DeleteResult, ListResult, ObjectService
from .registry import BackendRegistration, BackendRegistry, build_registry
from .resolution import Target, resolve_target
from .upload_service import (
    UploadEvent,
    UploadFailedError,
    UploadFile,
    UploadService,
)

__all__ = [
    "BackendRegistration",
    "BackendRegistry",
    "build_registry",
    "DeleteResult",
    "ListResult",
    "MAX_DELETE_PASSES",
    "ObjectService",
    "Target",
    "UploadEvent",
    "UploadFailedError",
    "UploadFile",
    "UploadService",
    "delete_prefix",
    "iter_prefix",
    "resolve_target",
]
