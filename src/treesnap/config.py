from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_OUTPUT_FILE = Path("output.tar")
DEFAULT_MAX_RETRIES = 5
DEFAULT_COMPRESSION_LEVEL = 3
MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 22
DEFAULT_LOG_LEVEL = "info"

EXIT_FAILURE = 1
EXIT_TARGET_NOT_EXISTS = 2
EXIT_TARGET_NOT_DIR = 3

ENV_PREFIX = "TREESNAP_"

PAX_CODEC_KEY = "TREESNAP.codec"
PAX_RAW_SIZE_KEY = "TREESNAP.size"


@dataclass(frozen=True)
class SnapshotConfig:
    root: Path
    output: Path = DEFAULT_OUTPUT_FILE
    max_retries: int = DEFAULT_MAX_RETRIES
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    exclude: tuple[str, ...] = ()
