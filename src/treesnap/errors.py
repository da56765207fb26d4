from __future__ import annotations

import errno
from enum import Enum
from pathlib import Path


class SnapshotError(Exception):
    """Base class for every error raised by treesnap."""


class CaptureErrorKind(str, Enum):
    CONCURRENT_MODIFICATION = "concurrent_modification"
    CONCURRENT_DELETION = "concurrent_deletion"
    IO_FAILURE = "io_failure"
    ENCODE_FAILURE = "encode_failure"


RETRYABLE_KINDS = frozenset(
    {CaptureErrorKind.CONCURRENT_MODIFICATION, CaptureErrorKind.CONCURRENT_DELETION}
)


class CaptureError(SnapshotError):
    def __init__(self, kind: CaptureErrorKind, path: Path, detail: str = "") -> None:
        self.kind = kind
        self.path = path
        self.detail = detail
        message = f"{kind.value}: {path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def is_retryable(self) -> bool:
        return self.retryable


ABSENT_ERRNOS = frozenset({errno.ENOENT, errno.ENOTDIR})


def classify_os_error(path: Path, exc: OSError) -> CaptureError:
    """Map an OSError raised while capturing `path` to a CaptureError.

    A path that vanished was deleted concurrently and is worth a retry.
    Anything else, permission denied included, is fatal for the snapshot:
    the path may still exist even though it cannot be inspected.
    """
    if exc.errno in ABSENT_ERRNOS:
        return CaptureError(CaptureErrorKind.CONCURRENT_DELETION, path, str(exc))
    return CaptureError(CaptureErrorKind.IO_FAILURE, path, str(exc))


class CaptureAbortedError(SnapshotError):
    def __init__(self, cause: CaptureError) -> None:
        self.cause = cause
        super().__init__(f"snapshot aborted: {cause}")


class IterationBoundExceededError(SnapshotError):
    def __init__(self, max_retries: int, last_error: CaptureError | None = None) -> None:
        self.max_retries = max_retries
        self.last_error = last_error
        message = f"no consistent pass after {max_retries} retries"
        if last_error is not None:
            message = f"{message}; last conflict: {last_error}"
        super().__init__(message)


class RootValidationError(SnapshotError):
    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"{reason}: {path}")


class RootNotFoundError(RootValidationError):
    def __init__(self, path: Path) -> None:
        super().__init__(path, "Target directory does not exist")


class RootNotADirectoryError(RootValidationError):
    def __init__(self, path: Path) -> None:
        super().__init__(path, "Target is not a directory")


class ArchiveWriteError(SnapshotError):
    pass


class ArchivePathError(SnapshotError):
    def __init__(self, root: Path, path: Path) -> None:
        self.root = root
        self.path = path
        super().__init__(f"entry {path} is not inside capture root {root}")


class ArchiveReadError(SnapshotError):
    pass
