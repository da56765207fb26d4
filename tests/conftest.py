from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from treesnap.codec import ZstdCodec
from treesnap.excludes import IgnoreRules
from treesnap.records import CaptureContext

SECOND_NS = 1_000_000_000


def set_mtime(path: Path, mtime_ns: int) -> None:
    os.utime(path, ns=(mtime_ns, mtime_ns), follow_symlinks=False)


def mk_tree(root: Path, files: dict[str, str], links: dict[str, str] | None = None) -> Path:
    """Create `files` and `links` under `root`, all dated one minute ago."""
    root.mkdir(parents=True, exist_ok=True)
    for relpath, text in files.items():
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    for relpath, target in (links or {}).items():
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(target, path)
    age_tree(root)
    return root


def age_tree(root: Path, seconds: int = 60) -> None:
    past = time.time_ns() - seconds * SECOND_NS
    paths = sorted(root.rglob("*"), key=lambda p: len(p.parts), reverse=True)
    for path in [*paths, root]:
        set_mtime(path, past)


class CountingCodec(ZstdCodec):
    def __init__(self, level: int = 3) -> None:
        super().__init__(level)
        self.calls = 0

    def compress(self, data: bytes) -> bytes:
        self.calls += 1
        return super().compress(data)


def mk_context(
    root: Path,
    *,
    codec: ZstdCodec | None = None,
    exclude: tuple[str, ...] = (),
) -> CaptureContext:
    return CaptureContext(
        root=root,
        codec=codec or CountingCodec(),
        rules=IgnoreRules.from_patterns(exclude),
    )


@pytest.fixture
def sample_tree(tmp_path) -> Path:
    return mk_tree(
        tmp_path / "root",
        {"a.txt": "hello", "dir/b.txt": "world"},
        links={"link": "a.txt"},
    ).resolve()
