"""Error taxonomy shared by drivers, services and the HTTP layer.

Backend-native failures (``OSError``, botocore ``ClientError``) are mapped to
these types at the driver boundary, so nothing above a driver needs to know
which storage technology raised the error.
"""

from __future__ import annotations

from typing import Iterable


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""

    status_code: int = 500
    error_code: str = "internal_error"


class MalformedIdentifierError(StorageError):
    """Raised when an object identifier cannot be parsed."""

    status_code = 400
    error_code = "malformed_identifier"


class NotHandledError(StorageError):
    """Raised when no registered backend handles an identifier."""

    status_code = 404
    error_code = "not_handled"


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist."""

    status_code = 404
    error_code = "not_found"


class PermissionDeniedError(StorageError):
    """Raised when the backend refuses access to an object."""

    status_code = 403
    error_code = "forbidden"


class InvalidArgumentError(StorageError):
    """Raised when a request is invalid for the target backend."""

    status_code = 400
    error_code = "bad_request"


class ConflictError(StorageError):
    """Raised when a write collides with existing state."""

    status_code = 409
    error_code = "conflict"


class InternalStorageError(StorageError):
    """Raised for unexpected backend faults."""


class OperationCancelledError(StorageError):
    """Raised when the caller cancelled an in-flight operation."""

    error_code = "cancelled"


class ConfigurationError(Exception):
    """Raised when backends are misconfigured at startup."""


class CompositeError(StorageError):
    """A primary failure together with the errors raised while cleaning up.

    The status of the composite is the status of the primary error, so a
    rollback failure never changes how the original problem is reported.
    """

    def __init__(self, cause: BaseException, cleanup: Iterable[BaseException] = ()):
        self.cause = cause
        self.cleanup_errors = list(cleanup)
        message = str(cause)
        if self.cleanup_errors:
            details = "; ".join(str(err) for err in self.cleanup_errors)
            message = f"{message} (cleanup failed: {details})"
        super().__init__(message)
        if isinstance(cause, StorageError):
            self.status_code = cause.status_code
            self.error_code = cause.error_code


def join_errors(
    cause: BaseException, cleanup: Iterable[BaseException]
) -> BaseException:
    """Return ``cause`` unchanged, or a ``CompositeError`` when cleanup failed."""
    cleanup_errors = list(cleanup)
    if not cleanup_errors:
        return cause
    return CompositeError(cause, cleanup_errors)


__all__ = [
    "CompositeError",
    "ConfigurationError",
    "ConflictError",
    "InternalStorageError",
    "InvalidArgumentError",
    "MalformedIdentifierError",
    "NotHandledError",
    "ObjectNotFoundError",
    "OperationCancelledError",
    "PermissionDeniedError",
    "StorageError",
    "join_errors",
]
