from __future__ import annotations

import logging

from .clock import Revision
from .models import EntryKind, SnapshotEntry
from .tree import DirectoryNode

logger = logging.getLogger(__name__)


def compile_tree(
    node: DirectoryNode,
    revision: Revision,
    log: logging.Logger | None = None,
) -> list[SnapshotEntry]:
    """Flatten a converged tree into archive-ready entries.

    Only nodes and records confirmed at `revision` are emitted. Order is:
    the directory itself, its files, its sub-directories (recursively),
    then its symlinks; each group sorted by path.
    """
    log = log or logger
    entries: list[SnapshotEntry] = []
    _compile_into(node, revision, entries, log)
    log.debug("compiled %d entries at revision %d", len(entries), revision)
    return entries


def _compile_into(
    node: DirectoryNode,
    revision: Revision,
    entries: list[SnapshotEntry],
    log: logging.Logger,
) -> None:
    if node.is_stale(revision) or node.metadata is None:
        log.debug(
            "skipping %s: confirmed at %s, expected %d", node.origin, node.revision, revision
        )
        return

    entries.append(SnapshotEntry(node.origin, node.metadata, EntryKind.DIRECTORY))

    for path in sorted(node.files):
        record = node.files[path]
        if record.is_stale(revision) or record.metadata is None:
            log.debug("skipping stale file %s", path)
            continue
        entries.append(
            SnapshotEntry(path, record.metadata, EntryKind.FILE, payload=record.payload)
        )

    for path in sorted(node.directories):
        _compile_into(node.directories[path], revision, entries, log)

    for path in sorted(node.symlinks):
        link = node.symlinks[path]
        if link.is_stale(revision) or link.metadata is None:
            log.debug("skipping stale symlink %s", path)
            continue
        entries.append(SnapshotEntry(path, link.metadata, EntryKind.SYMLINK))
