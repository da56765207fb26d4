from __future__ import annotations

import zstandard

from .config import DEFAULT_COMPRESSION_LEVEL


class ZstdCodec:
    """Independent zstd frame per file payload."""

    name = "zstd"

    def __init__(self, level: int = DEFAULT_COMPRESSION_LEVEL) -> None:
        self.level = level
        self._compressor = zstandard.ZstdCompressor(level=level)
        self._decompressor = zstandard.ZstdDecompressor()

    def compress(self, data: bytes) -> bytes:
        return self._compressor.compress(data)

    def decompress(self, data: bytes) -> bytes:
        return self._decompressor.decompress(data)


CODECS = {ZstdCodec.name: ZstdCodec}
