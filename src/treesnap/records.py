from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import zstandard

from .clock import Revision
from .codec import ZstdCodec
from .errors import CaptureError, CaptureErrorKind, classify_os_error
from .excludes import IgnoreRules
from .logs import TRACE
from .models import EntryMetadata


@dataclass
class CaptureContext:
    """Collaborators shared by every node and record of one snapshot."""

    root: Path
    codec: ZstdCodec = field(default_factory=ZstdCodec)
    rules: IgnoreRules = field(default_factory=IgnoreRules)
    log: logging.Logger = field(
        default_factory=lambda: logging.getLogger("treesnap.capture")
    )

    def relpath(self, path: Path) -> PurePosixPath:
        if path == self.root:
            return PurePosixPath(".")
        return PurePosixPath(path.relative_to(self.root).as_posix())


def lstat_or_fail(path: Path) -> os.stat_result:
    try:
        return path.lstat()
    except OSError as exc:
        raise classify_os_error(path, exc) from exc


def check_fence(path: Path, st: os.stat_result, revision: Revision, log: logging.Logger) -> None:
    if st.st_mtime_ns > revision:
        log.info("%s was modified after the visit revision; will revisit", path)
        raise CaptureError(
            CaptureErrorKind.CONCURRENT_MODIFICATION,
            path,
            f"mtime {st.st_mtime_ns} > revision {revision}",
        )


class FileRecord:
    """Compressed content of one regular file, confirmed at `revision`.

    Records are kept across retries. A revisit only re-reads the file when
    its mtime is not strictly older than the revision it was last confirmed
    at.
    """

    def __init__(self, path: Path, context: CaptureContext) -> None:
        self.path = path
        self.context = context
        self.metadata: EntryMetadata | None = None
        self.revision: Revision | None = None
        self.payload = b""

    @classmethod
    def capture(cls, path: Path, revision: Revision, context: CaptureContext) -> FileRecord:
        record = cls(path, context)
        record.visit(revision)
        return record

    def is_stale(self, revision: Revision) -> bool:
        return self.revision != revision

    def visit(self, revision: Revision) -> None:
        log = self.context.log
        st = self._stat()
        check_fence(self.path, st, revision, log)

        if self.revision is not None and st.st_mtime_ns < self.revision:
            log.log(TRACE, "%s unchanged since last capture", self.path)
            self.revision = revision
            return

        self.payload = self._read_and_compress(st)
        self.metadata = EntryMetadata.from_stat(st)
        self.revision = revision
        log.debug("captured %s (%d -> %d bytes)", self.path, st.st_size, len(self.payload))

    def _stat(self) -> os.stat_result:
        st = lstat_or_fail(self.path)
        if not stat.S_ISREG(st.st_mode):
            raise CaptureError(
                CaptureErrorKind.CONCURRENT_MODIFICATION,
                self.path,
                "no longer a regular file",
            )
        return st

    def _read_and_compress(self, before: os.stat_result) -> bytes:
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            error = classify_os_error(self.path, exc)
            self.context.log.error("failed to read %s: %s", self.path, exc)
            raise error from exc

        after = self._stat()
        if after.st_mtime_ns != before.st_mtime_ns or after.st_size != before.st_size:
            self.context.log.info("%s changed while being read; will revisit", self.path)
            raise CaptureError(
                CaptureErrorKind.CONCURRENT_MODIFICATION, self.path, "changed while reading"
            )

        try:
            return self.context.codec.compress(data)
        except zstandard.ZstdError as exc:
            self.context.log.error("failed to encode data for %s: %s", self.path, exc)
            raise CaptureError(CaptureErrorKind.ENCODE_FAILURE, self.path, str(exc)) from exc


class SymlinkRecord:
    """Metadata of one symbolic link; the target is read at archive time."""

    def __init__(self, path: Path, context: CaptureContext) -> None:
        self.path = path
        self.context = context
        self.metadata: EntryMetadata | None = None
        self.revision: Revision | None = None

    @classmethod
    def capture(cls, path: Path, revision: Revision, context: CaptureContext) -> SymlinkRecord:
        record = cls(path, context)
        record.visit(revision)
        return record

    def is_stale(self, revision: Revision) -> bool:
        return self.revision != revision

    def visit(self, revision: Revision) -> None:
        st = lstat_or_fail(self.path)
        if not stat.S_ISLNK(st.st_mode):
            raise CaptureError(
                CaptureErrorKind.CONCURRENT_MODIFICATION, self.path, "no longer a symlink"
            )
        check_fence(self.path, st, revision, self.context.log)
        self.metadata = EntryMetadata.from_stat(st)
        self.revision = revision
        self.context.log.log(TRACE, "confirmed symlink %s", self.path)
