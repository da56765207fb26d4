from __future__ import annotations

import io
import logging
import os
import tarfile
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .codec import ZstdCodec
from .config import PAX_CODEC_KEY, PAX_RAW_SIZE_KEY
from .errors import ArchivePathError, ArchiveWriteError
from .excludes import IgnoreRules
from .logs import TRACE
from .models import EntryKind, SnapshotEntry

logger = logging.getLogger(__name__)


@dataclass
class ArchiveSummary:
    directories: int = 0
    files: int = 0
    symlinks: int = 0
    skipped_symlinks: int = 0
    payload_bytes: int = 0


def relative_entry_path(root: Path, path: Path) -> PurePosixPath:
    try:
        rel = path.relative_to(root)
    except ValueError as exc:
        raise ArchivePathError(root, path) from exc
    return PurePosixPath(rel.as_posix()) if rel.parts else PurePosixPath(".")


def resolve_link_target(root: Path, link_path: Path) -> Path | None:
    """Fully resolve the live link, or return None if it leaves `root`.

    Raises FileNotFoundError when the link itself is gone.
    """
    os.readlink(link_path)
    resolved = Path(os.path.realpath(link_path))
    try:
        resolved.relative_to(root)
    except ValueError:
        return None
    return resolved


def stored_link_target(resolved: Path, link_path: Path) -> str:
    # Relative to the link's own directory so it still works once extracted.
    return PurePosixPath(os.path.relpath(resolved, link_path.parent)).as_posix()


def symlink_target_in_root(root: Path, link_path: Path) -> str | None:
    resolved = resolve_link_target(root, link_path)
    if resolved is None:
        return None
    return stored_link_target(resolved, link_path)


def _base_info(name: PurePosixPath, entry: SnapshotEntry) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name.as_posix())
    info.mode = entry.metadata.mode
    info.mtime = entry.metadata.mtime_ns / 1_000_000_000
    info.uid = entry.metadata.uid
    info.gid = entry.metadata.gid
    return info


def _add_entry(
    tar: tarfile.TarFile,
    root: Path,
    entry: SnapshotEntry,
    codec_name: str,
    rules: IgnoreRules,
    summary: ArchiveSummary,
    log: logging.Logger,
) -> None:
    name = relative_entry_path(root, entry.path)
    info = _base_info(name, entry)

    if entry.kind == EntryKind.DIRECTORY:
        info.type = tarfile.DIRTYPE
        log.log(TRACE, "adding directory %s", name)
        tar.addfile(info)
        summary.directories += 1
        return

    if entry.kind == EntryKind.FILE:
        payload = entry.payload or b""
        info.type = tarfile.REGTYPE
        info.size = len(payload)
        info.pax_headers = {
            PAX_CODEC_KEY: codec_name,
            PAX_RAW_SIZE_KEY: str(entry.metadata.size),
        }
        log.log(TRACE, "adding %s to archive; size %d", name, info.size)
        tar.addfile(info, io.BytesIO(payload))
        summary.files += 1
        summary.payload_bytes += info.size
        return

    try:
        resolved = resolve_link_target(root, entry.path)
    except (FileNotFoundError, NotADirectoryError):
        log.warning("symlink %s vanished before it was archived; omitting it", entry.path)
        summary.skipped_symlinks += 1
        return
    except OSError as exc:
        raise ArchiveWriteError(f"cannot resolve symlink {entry.path}: {exc}") from exc
    if resolved is None:
        log.warning("symlink %s points outside %s; omitting it", entry.path, root)
        summary.skipped_symlinks += 1
        return
    if rules and rules.is_ignored_path(
        relative_entry_path(root, resolved), is_dir=resolved.is_dir()
    ):
        log.warning("symlink %s points at excluded %s; omitting it", entry.path, resolved)
        summary.skipped_symlinks += 1
        return
    target = stored_link_target(resolved, entry.path)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    log.log(TRACE, "adding symlink %s -> %s", name, target)
    tar.addfile(info)
    summary.symlinks += 1


def write_archive(
    root: Path,
    entries: Iterable[SnapshotEntry],
    output: Path,
    *,
    codec_name: str = ZstdCodec.name,
    exclude: Iterable[str] = (),
    log: logging.Logger | None = None,
) -> ArchiveSummary:
    """Serialize `entries` into a PAX tar at `output`.

    The archive is built in a temporary file next to `output` and moved
    into place only once complete. Symlinks into paths matched by
    `exclude` are omitted, like links that leave `root`.
    """
    log = log or logger
    root = root.expanduser().resolve()
    rules = IgnoreRules.from_patterns(exclude)
    summary = ArchiveSummary()
    output = output.expanduser().absolute()
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            prefix=f".{output.name}-", suffix=".partial", dir=output.parent, delete=False
        )
    except OSError as exc:
        raise ArchiveWriteError(f"cannot create archive in {output.parent}: {exc}") from exc

    tmp_path = Path(handle.name)
    try:
        with handle, tarfile.open(fileobj=handle, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for entry in entries:
                _add_entry(tar, root, entry, codec_name, rules, summary, log)
        os.replace(tmp_path, output)
    except (OSError, tarfile.TarError) as exc:
        tmp_path.unlink(missing_ok=True)
        raise ArchiveWriteError(f"failed to write archive {output}: {exc}") from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    log.info(
        "wrote %s: %d directories, %d files, %d symlinks (%d skipped)",
        output,
        summary.directories,
        summary.files,
        summary.symlinks,
        summary.skipped_symlinks,
    )
    return summary
