from __future__ import annotations

from collections.abc import Iterable
from pathlib import PurePosixPath

from pathspec import PathSpec


class IgnoreRules:
    """Evaluates gitignore-style exclude patterns relative to the capture root."""

    def __init__(self, spec: PathSpec | None = None) -> None:
        self._spec = spec

    @classmethod
    def from_patterns(cls, patterns: Iterable[str]) -> IgnoreRules:
        clean = [
            line.strip()
            for line in patterns
            if line.strip() and not line.lstrip().startswith("#")
        ]
        if not clean:
            return cls()
        return cls(PathSpec.from_lines("gitwildmatch", clean))

    def __bool__(self) -> bool:
        return self._spec is not None

    def is_ignored(self, relpath: PurePosixPath, is_dir: bool) -> bool:
        if self._spec is None:
            return False
        target = relpath.as_posix()
        if is_dir and not target.endswith("/"):
            target = f"{target}/"
        if self._spec.match_file(target):
            return True
        return is_dir and self._spec.match_file(target.rstrip("/"))

    def is_ignored_path(self, relpath: PurePosixPath, is_dir: bool) -> bool:
        """Like `is_ignored`, but also true when any ancestor is ignored."""
        parts = relpath.parts
        if not parts:
            return False
        for idx in range(1, len(parts)):
            if self.is_ignored(PurePosixPath(*parts[:idx]), is_dir=True):
                return True
        return self.is_ignored(relpath, is_dir=is_dir)
