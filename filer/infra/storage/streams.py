"""Wrappers around readable byte streams used while uploading."""

from __future__ import annotations

import threading
from typing import BinaryIO, Callable

from filer.common.errors import OperationCancelledError

PROGRESS_CHUNK_BYTES = 64 * 1024


class ProgressReader:
    """Calls ``emit(written)`` each time another 64 KiB has been read.

    Nothing is emitted at EOF; callers report completion themselves.
    """

    def __init__(
        self,
        raw: BinaryIO,
        emit: Callable[[int], None],
        *,
        chunk_size: int = PROGRESS_CHUNK_BYTES,
    ) -> None:
        self._raw = raw
        self._emit = emit
        self._chunk_size = chunk_size
        self.written = 0
        self._emitted = 0

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        if data:
            self.written += len(data)
            while self.written - self._emitted >= self._chunk_size:
                self._emitted += self._chunk_size
                self._emit(self._emitted)
        return data

    def close(self) -> None:
        self._raw.close()


class CancellableReader:
    """Raises :class:`OperationCancelledError` once ``cancel`` is set.

    Drivers see the error like any other stream failure, so their own
    cleanup (partial-file removal, multipart abort) still runs.
    """

    def __init__(self, raw: BinaryIO, cancel: threading.Event) -> None:
        self._raw = raw
        self._cancel = cancel

    def read(self, size: int = -1) -> bytes:
        if self._cancel.is_set():
            raise OperationCancelledError("Upload cancelled by client")
        return self._raw.read(size)

    def close(self) -> None:
        self._raw.close()


def read_chunk(body: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, looping over short reads until EOF."""
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        data = body.read(remaining)
        if not data:
            break
        chunks.append(data)
        remaining -= len(data)
    return b"".join(chunks)
