from __future__ import annotations

import errno
import os
import time
from pathlib import Path

import pytest
import zstandard

from treesnap.errors import CaptureError, CaptureErrorKind, classify_os_error
from treesnap.records import FileRecord, SymlinkRecord

from conftest import SECOND_NS, CountingCodec, mk_context, set_mtime


def _decompress(payload: bytes) -> bytes:
    return zstandard.ZstdDecompressor().decompress(payload)


def test_capture_compresses_content_and_stamps_revision(sample_tree) -> None:
    revision = time.time_ns()
    record = FileRecord.capture(sample_tree / "a.txt", revision, mk_context(sample_tree))

    assert _decompress(record.payload) == b"hello"
    assert record.revision == revision
    assert record.metadata is not None
    assert record.metadata.size == 5
    assert not record.is_stale(revision)
    assert record.is_stale(revision + 1)


def test_new_record_is_stale() -> None:
    record = FileRecord(Path("/nowhere"), mk_context(Path("/")))
    assert record.is_stale(time.time_ns())


def test_revisit_of_unchanged_file_skips_read_and_compression(sample_tree, monkeypatch) -> None:
    codec = CountingCodec()
    path = sample_tree / "a.txt"
    first = time.time_ns()
    record = FileRecord.capture(path, first, mk_context(sample_tree, codec=codec))
    payload = record.payload
    metadata = record.metadata

    reads: list[Path] = []
    original = Path.read_bytes

    def counting_read(self: Path) -> bytes:
        reads.append(self)
        return original(self)

    monkeypatch.setattr(Path, "read_bytes", counting_read)
    second = first + 5 * SECOND_NS
    record.visit(second)

    assert reads == []
    assert codec.calls == 1
    assert record.payload is payload
    assert record.metadata == metadata
    assert record.revision == second


def test_revisit_rereads_file_touched_since_last_confirmation(sample_tree) -> None:
    codec = CountingCodec()
    path = sample_tree / "a.txt"
    first = time.time_ns() - 10 * SECOND_NS
    record = FileRecord.capture(path, first, mk_context(sample_tree, codec=codec))

    path.write_text("hello again", encoding="utf-8")
    set_mtime(path, first + 1)
    record.visit(time.time_ns())

    assert codec.calls == 2
    assert _decompress(record.payload) == b"hello again"


def test_mtime_equal_to_previous_revision_is_reread(sample_tree) -> None:
    codec = CountingCodec()
    path = sample_tree / "a.txt"
    first = time.time_ns() - 10 * SECOND_NS
    record = FileRecord.capture(path, first, mk_context(sample_tree, codec=codec))

    set_mtime(path, first)
    record.visit(first + SECOND_NS)

    assert codec.calls == 2


def test_file_modified_after_fence_is_recoverable(sample_tree) -> None:
    path = sample_tree / "a.txt"
    revision = time.time_ns()
    set_mtime(path, revision + 60 * SECOND_NS)

    with pytest.raises(CaptureError) as excinfo:
        FileRecord.capture(path, revision, mk_context(sample_tree))

    assert excinfo.value.kind == CaptureErrorKind.CONCURRENT_MODIFICATION
    assert excinfo.value.is_retryable()


def test_deleted_file_is_recoverable(sample_tree) -> None:
    path = sample_tree / "a.txt"
    record = FileRecord.capture(path, time.time_ns(), mk_context(sample_tree))
    path.unlink()

    with pytest.raises(CaptureError) as excinfo:
        record.visit(time.time_ns())

    assert excinfo.value.kind == CaptureErrorKind.CONCURRENT_DELETION
    assert excinfo.value.retryable


def test_unreadable_existing_file_is_not_recoverable(sample_tree, monkeypatch) -> None:
    path = sample_tree / "a.txt"
    original = Path.read_bytes

    def denied(self: Path) -> bytes:
        if self == path:
            raise PermissionError(13, "Permission denied", str(self))
        return original(self)

    monkeypatch.setattr(Path, "read_bytes", denied)

    with pytest.raises(CaptureError) as excinfo:
        FileRecord.capture(path, time.time_ns(), mk_context(sample_tree))

    assert excinfo.value.kind == CaptureErrorKind.IO_FAILURE
    assert not excinfo.value.retryable


def test_file_changed_while_reading_is_recoverable(sample_tree, monkeypatch) -> None:
    path = sample_tree / "a.txt"
    revision = time.time_ns()
    original = Path.read_bytes

    def racing_read(self: Path) -> bytes:
        data = original(self)
        with open(self, "ab") as handle:
            handle.write(b" and more")
        return data

    monkeypatch.setattr(Path, "read_bytes", racing_read)

    with pytest.raises(CaptureError) as excinfo:
        FileRecord.capture(path, revision, mk_context(sample_tree))

    assert excinfo.value.kind == CaptureErrorKind.CONCURRENT_MODIFICATION


def test_file_replaced_by_directory_is_recoverable(sample_tree) -> None:
    path = sample_tree / "a.txt"
    record = FileRecord.capture(path, time.time_ns(), mk_context(sample_tree))
    path.unlink()
    path.mkdir()

    with pytest.raises(CaptureError) as excinfo:
        record.visit(time.time_ns())

    assert excinfo.value.kind == CaptureErrorKind.CONCURRENT_MODIFICATION


def test_encoder_failure_is_not_recoverable(sample_tree) -> None:
    class BrokenCodec(CountingCodec):
        def compress(self, data: bytes) -> bytes:
            raise zstandard.ZstdError("boom")

    with pytest.raises(CaptureError) as excinfo:
        FileRecord.capture(
            sample_tree / "a.txt", time.time_ns(), mk_context(sample_tree, codec=BrokenCodec())
        )

    assert excinfo.value.kind == CaptureErrorKind.ENCODE_FAILURE
    assert not excinfo.value.retryable


def test_symlink_capture_does_not_follow_target(sample_tree) -> None:
    link = sample_tree / "link"
    revision = time.time_ns()
    record = SymlinkRecord.capture(link, revision, mk_context(sample_tree))

    assert record.revision == revision
    assert record.metadata is not None
    assert record.metadata.node_type.value == "symlink"


def test_broken_symlink_still_converges(sample_tree) -> None:
    (sample_tree / "a.txt").unlink()
    record = SymlinkRecord.capture(sample_tree / "link", time.time_ns(), mk_context(sample_tree))
    assert record.revision is not None


def test_deleted_symlink_is_recoverable(sample_tree) -> None:
    link = sample_tree / "link"
    record = SymlinkRecord.capture(link, time.time_ns(), mk_context(sample_tree))
    os.unlink(link)

    with pytest.raises(CaptureError) as excinfo:
        record.visit(time.time_ns())

    assert excinfo.value.kind == CaptureErrorKind.CONCURRENT_DELETION


def test_symlink_relinked_after_fence_is_recoverable(sample_tree) -> None:
    link = sample_tree / "link"
    revision = time.time_ns()
    set_mtime(link, revision + 60 * SECOND_NS)

    with pytest.raises(CaptureError) as excinfo:
        SymlinkRecord.capture(link, revision, mk_context(sample_tree))

    assert excinfo.value.kind == CaptureErrorKind.CONCURRENT_MODIFICATION


def test_denied_metadata_on_existing_file_is_not_recoverable(sample_tree, monkeypatch) -> None:
    path = sample_tree / "dir" / "b.txt"
    original = Path.lstat

    def denied(self: Path) -> os.stat_result:
        if self == path:
            raise PermissionError(errno.EACCES, "Permission denied", str(self))
        return original(self)

    monkeypatch.setattr(Path, "lstat", denied)

    with pytest.raises(CaptureError) as excinfo:
        FileRecord.capture(path, time.time_ns(), mk_context(sample_tree))

    assert excinfo.value.kind == CaptureErrorKind.IO_FAILURE
    assert not excinfo.value.retryable


def test_os_errors_are_classified_by_errno(sample_tree) -> None:
    path = sample_tree / "a.txt"

    def kind(code: int) -> CaptureErrorKind:
        return classify_os_error(path, OSError(code, os.strerror(code))).kind

    assert kind(errno.ENOENT) == CaptureErrorKind.CONCURRENT_DELETION
    assert kind(errno.ENOTDIR) == CaptureErrorKind.CONCURRENT_DELETION
    assert kind(errno.EACCES) == CaptureErrorKind.IO_FAILURE
    assert kind(errno.EIO) == CaptureErrorKind.IO_FAILURE
