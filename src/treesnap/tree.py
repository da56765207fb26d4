from __future__ import annotations

import os
import stat
from pathlib import Path

from .clock import Revision
from .errors import CaptureError, CaptureErrorKind, classify_os_error
from .models import EntryMetadata, NodeType, node_type
from .records import CaptureContext, FileRecord, SymlinkRecord, check_fence, lstat_or_fail


class DirectoryNode:
    """One directory of the captured tree and the cached records below it.

    The listing is re-read on every visit; only per-child records and
    sub-nodes are cached. Children that disappear from the listing keep
    their old revision and are dropped at compile time.
    """

    def __init__(self, origin: Path, context: CaptureContext) -> None:
        self.origin = origin
        self.context = context
        self.metadata: EntryMetadata | None = None
        self.revision: Revision | None = None
        self.files: dict[Path, FileRecord] = {}
        self.directories: dict[Path, DirectoryNode] = {}
        self.symlinks: dict[Path, SymlinkRecord] = {}

    def is_stale(self, revision: Revision) -> bool:
        return self.revision != revision

    def visit(self, revision: Revision) -> None:
        st = lstat_or_fail(self.origin)
        if not stat.S_ISDIR(st.st_mode):
            raise CaptureError(
                CaptureErrorKind.CONCURRENT_MODIFICATION, self.origin, "no longer a directory"
            )
        check_fence(self.origin, st, revision, self.context.log)
        self.metadata = EntryMetadata.from_stat(st)

        for path, kind in self._list():
            if kind == NodeType.DIR:
                self._visit_directory(path, revision)
            elif kind == NodeType.FILE:
                self._visit_file(path, revision)
            elif kind == NodeType.SYMLINK:
                self._visit_symlink(path, revision)
            else:
                self.context.log.info("skipping %s: unsupported file type", path)

        self.revision = revision

    def _list(self) -> list[tuple[Path, NodeType]]:
        listing: list[tuple[Path, NodeType]] = []
        try:
            with os.scandir(self.origin) as entries:
                for entry in entries:
                    path = self.origin / entry.name
                    try:
                        kind = node_type(entry.stat(follow_symlinks=False).st_mode)
                    except OSError as exc:
                        raise classify_os_error(path, exc) from exc
                    if self.context.rules and self.context.rules.is_ignored(
                        self.context.relpath(path), is_dir=kind == NodeType.DIR
                    ):
                        self.context.log.debug("excluded %s", path)
                        continue
                    listing.append((path, kind))
        except OSError as exc:
            self.context.log.error("failed to read directory %s: %s", self.origin, exc)
            raise classify_os_error(self.origin, exc) from exc
        listing.sort(key=lambda item: item[0].name)
        return listing

    def _visit_directory(self, path: Path, revision: Revision) -> None:
        node = self.directories.get(path)
        if node is None:
            node = DirectoryNode(path, self.context)
            self.directories[path] = node
        node.visit(revision)

    def _visit_file(self, path: Path, revision: Revision) -> None:
        record = self.files.get(path)
        if record is None:
            self.files[path] = FileRecord.capture(path, revision, self.context)
        else:
            record.visit(revision)

    def _visit_symlink(self, path: Path, revision: Revision) -> None:
        record = self.symlinks.get(path)
        if record is None:
            self.symlinks[path] = SymlinkRecord.capture(path, revision, self.context)
        else:
            record.visit(revision)
