from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from .archiver import ArchiveSummary, write_archive
from .clock import Revision, RevisionClock
from .codec import ZstdCodec
from .compiler import compile_tree
from .config import DEFAULT_COMPRESSION_LEVEL, DEFAULT_MAX_RETRIES, SnapshotConfig
from .errors import (
    CaptureAbortedError,
    CaptureError,
    IterationBoundExceededError,
    RootNotADirectoryError,
    RootNotFoundError,
)
from .excludes import IgnoreRules
from .models import SnapshotEntry
from .records import CaptureContext
from .tree import DirectoryNode

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, CaptureError], None]


@dataclass(frozen=True)
class CaptureResult:
    revision: Revision
    retries: int
    entries: list[SnapshotEntry]


@dataclass(frozen=True)
class SnapshotResult:
    capture: CaptureResult
    archive: ArchiveSummary
    output: Path


def validate_root(path: Path) -> Path:
    path = path.expanduser()
    if not path.exists():
        raise RootNotFoundError(path)
    if not path.is_dir():
        raise RootNotADirectoryError(path)
    return path.resolve()


def capture_tree(
    root: Path,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    exclude: Iterable[str] = (),
    clock: RevisionClock | None = None,
    log: logging.Logger | None = None,
    on_retry: RetryCallback | None = None,
) -> CaptureResult:
    """Capture `root` until one pass sees no change after its fence.

    Recoverable conflicts restart the pass with a later revision, reusing
    every record cached so far. A non-recoverable error aborts at once.
    After `max_retries` retries without a clean pass the capture fails.
    """
    log = log or logger
    root = root.expanduser().resolve()
    clock = clock or RevisionClock()
    context = CaptureContext(
        root=root,
        codec=ZstdCodec(compression_level),
        rules=IgnoreRules.from_patterns(exclude),
        log=log,
    )
    node = DirectoryNode(root, context)
    revision = clock.tick()
    retries = 0
    log.debug("processing directory %s at revision %d", root, revision)

    while True:
        try:
            node.visit(revision)
            break
        except CaptureError as exc:
            if not exc.retryable:
                log.error("unrecoverable error while capturing %s: %s", root, exc)
                raise CaptureAbortedError(exc) from exc
            if retries >= max_retries:
                log.error("giving up on %s after %d retries", root, retries)
                raise IterationBoundExceededError(max_retries, exc) from exc
            retries += 1
            if on_retry is not None:
                on_retry(retries, exc)
            revision = clock.tick()
            log.info("retry %d/%d at revision %d after %s", retries, max_retries, revision, exc)

    entries = compile_tree(node, revision, log)
    return CaptureResult(revision=revision, retries=retries, entries=entries)


def take_snapshot(
    config: SnapshotConfig,
    *,
    clock: RevisionClock | None = None,
    log: logging.Logger | None = None,
    on_retry: RetryCallback | None = None,
) -> SnapshotResult:
    root = validate_root(config.root)
    result = capture_tree(
        root,
        max_retries=config.max_retries,
        compression_level=config.compression_level,
        exclude=config.exclude,
        clock=clock,
        log=log,
        on_retry=on_retry,
    )
    summary = write_archive(
        root, result.entries, config.output, exclude=config.exclude, log=log
    )
    return SnapshotResult(capture=result, archive=summary, output=config.output)
