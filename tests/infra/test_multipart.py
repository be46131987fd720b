from __future__ import annotations

import io
from typing import Sequence

import pytest

from filer.common.errors import (
    CompositeError,
    InternalStorageError,
    InvalidArgumentError,
)
from filer.infra.storage.client import ObjectRecord, UploadPart
from filer.infra.storage.multipart import run_multipart_upload


class FakeSession:
    def __init__(self, *, fail_on_part: int | None = None, fail_abort: bool = False):
        self.parts: list[tuple[int, bytes]] = []
        self.completed: list[UploadPart] | None = None
        self.aborted = False
        self._fail_on_part = fail_on_part
        self._fail_abort = fail_abort

    def upload_part(self, part_number: int, data: bytes) -> UploadPart:
        if part_number == self._fail_on_part:
            raise InternalStorageError(f"part {part_number} failed")
        self.parts.append((part_number, data))
        return UploadPart(part_number=part_number, etag=f"e{part_number}", size=len(data))

    def complete(self, parts: Sequence[UploadPart]) -> ObjectRecord:
        self.completed = list(parts)
        return ObjectRecord(key="k", size=sum(part.size for part in parts))

    def abort(self) -> None:
        self.aborted = True
        if self._fail_abort:
            raise InternalStorageError("abort failed")


def test_uploads_parts_in_order() -> None:
    session = FakeSession()
    record = run_multipart_upload(
        session, io.BytesIO(b"abcdefghij"), 4, min_part_size=1
    )
    assert [number for number, _ in session.parts] == [1, 2, 3]
    assert [data for _, data in session.parts] == [b"abcd", b"efgh", b"ij"]
    assert record.size == 10
    assert not session.aborted


def test_exact_multiple_does_not_send_empty_part() -> None:
    session = FakeSession()
    run_multipart_upload(session, io.BytesIO(b"abcdefgh"), 4, min_part_size=1)
    assert [data for _, data in session.parts] == [b"abcd", b"efgh"]


def test_first_chunk_is_used_before_reading_body() -> None:
    session = FakeSession()
    run_multipart_upload(
        session, io.BytesIO(b"5678"), 4, first_chunk=b"1234", min_part_size=1
    )
    assert [data for _, data in session.parts] == [b"1234", b"5678"]


def test_part_size_below_minimum_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError):
        run_multipart_upload(FakeSession(), io.BytesIO(b""), 1024)


def test_failure_aborts_session() -> None:
    session = FakeSession(fail_on_part=2)
    with pytest.raises(InternalStorageError, match="part 2 failed"):
        run_multipart_upload(session, io.BytesIO(b"abcdefgh"), 4, min_part_size=1)
    assert session.aborted
    assert session.completed is None


def test_abort_failure_is_joined() -> None:
    session = FakeSession(fail_on_part=1, fail_abort=True)
    with pytest.raises(CompositeError) as excinfo:
        run_multipart_upload(session, io.BytesIO(b"abcd"), 4, min_part_size=1)
    assert "part 1 failed" in str(excinfo.value)
    assert "abort failed" in str(excinfo.value)
    assert len(excinfo.value.cleanup_errors) == 1
