"""Sequential multipart upload pipeline.

The pipeline is independent of any particular backend: it drives a
:class:`MultipartSession`, which the S3 driver implements on top of boto3.
"""

from __future__ import annotations

import logging
from typing import BinaryIO, Protocol, Sequence

from filer.common.config import MIN_PART_SIZE_BYTES
from filer.common.errors import InvalidArgumentError, join_errors
from filer.infra.storage.client import ObjectRecord, UploadPart
from filer.infra.storage.streams import read_chunk

logger = logging.getLogger("filer.storage")


class MultipartSession(Protocol):
    """An open upload session on a backend."""

    def upload_part(self, part_number: int, data: bytes) -> UploadPart:
        ...

    def complete(self, parts: Sequence[UploadPart]) -> ObjectRecord:
        ...

    def abort(self) -> None:
        ...


def run_multipart_upload(
    session: MultipartSession,
    body: BinaryIO,
    part_size: int,
    *,
    first_chunk: bytes | None = None,
    min_part_size: int = MIN_PART_SIZE_BYTES,
) -> ObjectRecord:
    """Upload ``body`` in ``part_size`` chunks and finalize the session.

    Parts are uploaded strictly in order. Every chunk except the last is
    exactly ``part_size`` bytes. ``first_chunk`` lets a caller that already
    peeked at the stream hand the bytes over.

    Any failure, including a cancelled body stream, aborts the session before
    the error propagates. If the abort fails as well, both errors are
    reported as a :class:`~filer.common.errors.CompositeError`.
    """
    if part_size < min_part_size:
        raise InvalidArgumentError(
            f"Part size {part_size} is below the minimum of {min_part_size} bytes"
        )

    parts: list[UploadPart] = []
    try:
        chunk = first_chunk if first_chunk is not None else read_chunk(body, part_size)
        while True:
            parts.append(session.upload_part(len(parts) + 1, chunk))
            if len(chunk) < part_size:
                break
            chunk = read_chunk(body, part_size)
            if not chunk:
                break
        return session.complete(parts)
    except Exception as exc:
        logger.warning(
            "multipart_upload_aborted",
            extra={"extra": {"parts": len(parts), "error": str(exc)}},
        )
        try:
            session.abort()
        except Exception as abort_exc:
            raise join_errors(exc, [abort_exc]) from exc
        raise


__all__ = ["MultipartSession", "run_multipart_upload"]
