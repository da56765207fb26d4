from __future__ import annotations

import logging
import os
import tarfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import zstandard

from .codec import CODECS
from .config import PAX_CODEC_KEY, PAX_RAW_SIZE_KEY
from .errors import ArchiveReadError
from .models import EntryKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveMember:
    name: str
    kind: EntryKind
    mode: int
    mtime: float
    size: int
    raw_size: int | None = None
    linkname: str | None = None
    codec: str | None = None
    content: bytes | None = None


def _kind(info: tarfile.TarInfo) -> EntryKind:
    if info.isdir():
        return EntryKind.DIRECTORY
    if info.issym():
        return EntryKind.SYMLINK
    if info.isfile():
        return EntryKind.FILE
    raise ArchiveReadError(f"unsupported member type for {info.name!r}")


def _decode(info: tarfile.TarInfo, data: bytes) -> bytes:
    codec_name = info.pax_headers.get(PAX_CODEC_KEY)
    if codec_name is None:
        return data
    codec_cls = CODECS.get(codec_name)
    if codec_cls is None:
        raise ArchiveReadError(f"unknown codec {codec_name!r} for {info.name!r}")
    try:
        return codec_cls().decompress(data)
    except zstandard.ZstdError as exc:
        raise ArchiveReadError(f"corrupt payload for {info.name!r}: {exc}") from exc


def _member(tar: tarfile.TarFile, info: tarfile.TarInfo, decompress: bool) -> ArchiveMember:
    kind = _kind(info)
    raw_size = info.pax_headers.get(PAX_RAW_SIZE_KEY)
    content = None
    if kind == EntryKind.FILE:
        handle = tar.extractfile(info)
        data = handle.read() if handle is not None else b""
        content = _decode(info, data) if decompress else data
    return ArchiveMember(
        name=info.name,
        kind=kind,
        mode=info.mode,
        mtime=info.mtime,
        size=info.size,
        raw_size=int(raw_size) if raw_size is not None else None,
        linkname=info.linkname if kind == EntryKind.SYMLINK else None,
        codec=info.pax_headers.get(PAX_CODEC_KEY),
        content=content,
    )


def read_archive(path: Path, *, decompress: bool = True) -> list[ArchiveMember]:
    try:
        with tarfile.open(path, mode="r:") as tar:
            return [_member(tar, info, decompress) for info in tar]
    except (OSError, tarfile.TarError) as exc:
        raise ArchiveReadError(f"cannot read archive {path}: {exc}") from exc


def _safe_target(destination: Path, name: str) -> Path:
    rel = PurePosixPath(name)
    if rel.is_absolute() or ".." in rel.parts:
        raise ArchiveReadError(f"refusing unsafe member name {name!r}")
    return destination / rel if rel.parts else destination


def _check_link(destination: Path, link_path: Path, linkname: str) -> None:
    target = PurePosixPath(linkname)
    resolved = os.path.normpath(link_path.parent / target)
    if target.is_absolute() or not Path(resolved).is_relative_to(destination):
        raise ArchiveReadError(f"refusing symlink {link_path} -> {linkname}")


def restore_archive(
    path: Path,
    destination: Path,
    *,
    log: logging.Logger | None = None,
) -> int:
    """Extract a snapshot into `destination`, returning the member count."""
    log = log or logger
    destination = destination.expanduser().absolute()
    members = read_archive(path)
    directories: list[tuple[Path, ArchiveMember]] = []

    try:
        destination.mkdir(parents=True, exist_ok=True)
        for member in members:
            target = _safe_target(destination, member.name)
            if member.kind == EntryKind.DIRECTORY:
                target.mkdir(parents=True, exist_ok=True)
                directories.append((target, member))
            elif member.kind == EntryKind.FILE:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(member.content or b"")
                os.chmod(target, member.mode)
                mtime_ns = int(member.mtime * 1_000_000_000)
                os.utime(target, ns=(mtime_ns, mtime_ns))
            else:
                _check_link(destination, target, member.linkname or "")
                target.parent.mkdir(parents=True, exist_ok=True)
                if os.path.lexists(target):
                    target.unlink()
                os.symlink(member.linkname or "", target)
            log.debug("restored %s", target)

        # Deepest first, so child writes do not bump parent mtimes afterwards.
        deepest_first = sorted(directories, key=lambda item: len(item[0].parts), reverse=True)
        for target, member in deepest_first:
            os.chmod(target, member.mode)
            mtime_ns = int(member.mtime * 1_000_000_000)
            os.utime(target, ns=(mtime_ns, mtime_ns))
    except OSError as exc:
        raise ArchiveReadError(f"failed to restore {path} into {destination}: {exc}") from exc

    log.info("restored %d entries into %s", len(members), destination)
    return len(members)
