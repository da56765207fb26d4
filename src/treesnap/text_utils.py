from __future__ import annotations

import stat
import unicodedata


def normalize_text(value: str) -> str:
    """Return printable text for a path that may hold undecodable bytes.

    Filesystem names can contain lone surrogates from `surrogateescape`;
    terminal rendering rejects those, so they become replacement characters.
    Also canonicalize to NFC so composed and decomposed names look the same.
    """
    safe = value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
    return unicodedata.normalize("NFC", safe)


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def format_mode(mode: int, is_dir: bool = False, is_link: bool = False) -> str:
    if is_dir:
        return stat.filemode(stat.S_IFDIR | mode)
    if is_link:
        return stat.filemode(stat.S_IFLNK | mode)
    return stat.filemode(stat.S_IFREG | mode)
