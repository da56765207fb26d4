from __future__ import annotations

import time
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import (
    DEFAULT_COMPRESSION_LEVEL,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_OUTPUT_FILE,
    ENV_PREFIX,
    EXIT_FAILURE,
    EXIT_TARGET_NOT_DIR,
    EXIT_TARGET_NOT_EXISTS,
    MAX_COMPRESSION_LEVEL,
    MIN_COMPRESSION_LEVEL,
    SnapshotConfig,
)
from .driver import take_snapshot
from .errors import (
    ArchivePathError,
    ArchiveReadError,
    ArchiveWriteError,
    CaptureAbortedError,
    CaptureError,
    IterationBoundExceededError,
    RootNotADirectoryError,
    RootNotFoundError,
)
from .logs import configure_logging
from .models import EntryKind
from .restore import read_archive, restore_archive
from .text_utils import format_mode, format_size, normalize_text

app = typer.Typer(
    help="Consistent snapshots of directories that keep changing",
    no_args_is_help=True,
)
console = Console()


class LogLevel(str, Enum):
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@lru_cache(maxsize=1)
def _project_version() -> str:
    pyproject = Path(__file__).resolve().parents[2] / "pyproject.toml"
    data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    version = str(data["project"]["version"]).strip()
    if not version:
        raise RuntimeError("project.version in pyproject.toml is empty")
    return version


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"treesnap {_project_version()}")
        raise typer.Exit()


def _format_seconds(seconds: float) -> str:
    return f"{seconds:.2f}s"


@app.callback()
def _main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Take, inspect and restore consistent directory snapshots."""


@app.command()
def capture(
    target: Path = typer.Option(
        ...,
        "--target",
        "-t",
        help="The directory to capture in the snapshot.",
    ),
    output: Path = typer.Option(
        DEFAULT_OUTPUT_FILE,
        "--output",
        "-o",
        help="Output tar file; each file payload inside it is zstd-compressed.",
    ),
    max_retries: int = typer.Option(
        DEFAULT_MAX_RETRIES,
        min=0,
        envvar=f"{ENV_PREFIX}MAX_RETRIES",
        help="How many times to restart the capture after a concurrent change.",
    ),
    compression_level: int = typer.Option(
        DEFAULT_COMPRESSION_LEVEL,
        min=MIN_COMPRESSION_LEVEL,
        max=MAX_COMPRESSION_LEVEL,
        envvar=f"{ENV_PREFIX}COMPRESSION_LEVEL",
        help="zstd level used for every file payload.",
    ),
    exclude: list[str] | None = typer.Option(
        None,
        "--exclude",
        "-x",
        help="gitignore-style pattern, relative to the target. Repeatable.",
    ),
    log_level: LogLevel = typer.Option(
        LogLevel(DEFAULT_LOG_LEVEL),
        "--log-level",
        "-l",
        envvar=f"{ENV_PREFIX}LOG_LEVEL",
        help="Log level for the application.",
    ),
) -> None:
    """Capture TARGET into a single consistent archive."""
    log = configure_logging(log_level.value)
    config = SnapshotConfig(
        root=target,
        output=output,
        max_retries=max_retries,
        compression_level=compression_level,
        exclude=tuple(exclude or ()),
    )

    started = time.perf_counter()
    with console.status("Capturing snapshot...") as status:

        def on_retry(retries: int, error: CaptureError) -> None:
            status.update(
                f"Capturing snapshot... retry {retries}/{max_retries} "
                f"({error.kind.value}: {normalize_text(str(error.path))})"
            )

        try:
            result = take_snapshot(config, log=log, on_retry=on_retry)
        except RootNotFoundError as exc:
            status.stop()
            console.print(f"[red]Target directory does not exist:[/red] {exc.path}")
            raise typer.Exit(EXIT_TARGET_NOT_EXISTS)
        except RootNotADirectoryError as exc:
            status.stop()
            console.print(f"[red]Target is not a directory:[/red] {exc.path}")
            raise typer.Exit(EXIT_TARGET_NOT_DIR)
        except IterationBoundExceededError as exc:
            status.stop()
            console.print(f"[red]Snapshot did not converge:[/red] {exc}")
            raise typer.Exit(EXIT_FAILURE)
        except CaptureAbortedError as exc:
            status.stop()
            console.print(f"[red]Snapshot aborted:[/red] {exc.cause}")
            raise typer.Exit(EXIT_FAILURE)
        except (ArchiveWriteError, ArchivePathError) as exc:
            status.stop()
            console.print(f"[red]Archive write failed:[/red] {exc}")
            raise typer.Exit(EXIT_FAILURE)

    summary = result.archive
    console.print(f"Archive: {result.output}")
    console.print(f"Directories: {summary.directories}")
    console.print(f"Files: {summary.files}")
    console.print(f"Symlinks: {summary.symlinks}")
    if summary.skipped_symlinks:
        console.print(f"Symlinks outside target (omitted): {summary.skipped_symlinks}")
    console.print(f"Compressed payload: {format_size(summary.payload_bytes)}")
    console.print(f"Retries: {result.capture.retries}")
    console.print(f"Time: {_format_seconds(time.perf_counter() - started)}")


@app.command("list")
def list_archive(
    archive: Path = typer.Argument(..., help="Snapshot archive to inspect."),
) -> None:
    """List the members of a snapshot archive."""
    try:
        members = read_archive(archive, decompress=False)
    except ArchiveReadError as exc:
        console.print(f"[red]Cannot read archive:[/red] {exc}")
        raise typer.Exit(EXIT_FAILURE)

    table = Table(title=str(archive))
    table.add_column("Mode")
    table.add_column("Size", justify="right")
    table.add_column("Stored", justify="right")
    table.add_column("Name")
    for member in members:
        name = normalize_text(member.name)
        if member.kind == EntryKind.SYMLINK:
            name = f"{name} -> {normalize_text(member.linkname or '')}"
        elif member.kind == EntryKind.DIRECTORY and name != ".":
            name = f"{name}/"
        stored = member.size if member.kind == EntryKind.FILE else None
        table.add_row(
            format_mode(
                member.mode,
                is_dir=member.kind == EntryKind.DIRECTORY,
                is_link=member.kind == EntryKind.SYMLINK,
            ),
            format_size(member.raw_size),
            format_size(stored),
            name,
        )
    console.print(table)
    console.print(f"Members: {len(members)}")


@app.command()
def restore(
    archive: Path = typer.Argument(..., help="Snapshot archive to extract."),
    destination: Path = typer.Argument(..., help="Directory to extract into."),
    log_level: LogLevel = typer.Option(
        LogLevel(DEFAULT_LOG_LEVEL),
        "--log-level",
        "-l",
        envvar=f"{ENV_PREFIX}LOG_LEVEL",
        help="Log level for the application.",
    ),
) -> None:
    """Extract a snapshot archive, decompressing every file."""
    log = configure_logging(log_level.value)
    try:
        count = restore_archive(archive, destination, log=log)
    except ArchiveReadError as exc:
        console.print(f"[red]Restore failed:[/red] {exc}")
        raise typer.Exit(EXIT_FAILURE)
    console.print(f"Restored {count} entries into {destination}")


if __name__ == "__main__":
    app()
