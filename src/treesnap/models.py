from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class NodeType(str, Enum):
    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"
    OTHER = "other"


def node_type(st_mode: int) -> NodeType:
    if stat.S_ISDIR(st_mode):
        return NodeType.DIR
    if stat.S_ISLNK(st_mode):
        return NodeType.SYMLINK
    if stat.S_ISREG(st_mode):
        return NodeType.FILE
    return NodeType.OTHER


@dataclass(frozen=True)
class EntryMetadata:
    node_type: NodeType
    size: int
    mode: int
    mtime_ns: int
    uid: int = 0
    gid: int = 0

    @classmethod
    def from_stat(cls, st: os.stat_result) -> EntryMetadata:
        return cls(
            node_type=node_type(st.st_mode),
            size=st.st_size,
            mode=stat.S_IMODE(st.st_mode),
            mtime_ns=st.st_mtime_ns,
            uid=st.st_uid,
            gid=st.st_gid,
        )


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class SnapshotEntry:
    path: Path
    metadata: EntryMetadata
    kind: EntryKind
    payload: bytes | None = None
