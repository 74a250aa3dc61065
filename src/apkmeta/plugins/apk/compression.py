"""Compression utilities for APK container segments."""

from __future__ import annotations

import zlib
from typing import Literal

import zstandard as zstd

CompressionFormat = Literal["gzip", "zstandard"]

GZIP_MAGIC = b"\x1f\x8b"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

# Longest magic we need to look at before choosing a decoder
MAGIC_SIZE = max(len(GZIP_MAGIC), len(ZSTD_MAGIC))

# Errors a decoder may raise on malformed input
DECODER_ERRORS: tuple[type[Exception], ...] = (zlib.error, zstd.ZstdError)

# A zstd block decodes to at most 128 KiB and takes at least 4 input bytes
# (3 byte header + 1 byte RLE payload), so each input byte yields at most
# this many output bytes.
ZSTD_MAX_RATIO = 128 * 1024 // 4


def detect_compression(header: bytes) -> CompressionFormat | None:
    """Detect compression format from the first bytes of a stream.

    Args:
        header: Leading bytes of the stream (at least MAGIC_SIZE if available)

    Returns:
        Compression format or None if no known stream header is present
    """
    if header.startswith(GZIP_MAGIC):
        return "gzip"
    elif header.startswith(ZSTD_MAGIC):
        return "zstandard"
    else:
        return None


class StreamDecoder:
    """Incremental decoder for exactly one compressed stream.

    Decoding stops at the stream's own end marker; bytes fed past it are kept
    in ``unused_data`` so the caller can start the next stream from there.
    """

    def __init__(self, compression: CompressionFormat):
        """Initialize decoder.

        Args:
            compression: Compression format of the stream

        Raises:
            ValueError: If compression format is unknown
        """
        self.compression = compression
        self._tail = b""
        if compression == "gzip":
            # 16 + MAX_WBITS: expect a gzip header and trailer, single member
            self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)
        elif compression == "zstandard":
            self._obj = zstd.ZstdDecompressor().decompressobj()
        else:
            raise ValueError(f"Unknown compression format: {compression}")

    def decompress(self, data: bytes, max_length: int = 0) -> bytes:
        """Feed compressed bytes and return the newly decoded output.

        Args:
            data: Compressed input
            max_length: Output cap for this call (0 = unlimited). gzip honours
                it exactly; zstandard may exceed it by at most one block.

        Returns:
            Decompressed bytes produced from this input
        """
        if self.compression == "gzip":
            return self._obj.decompress(data, max_length)
        if not max_length:
            return self._obj.decompress(data)
        return self._decompress_zstd(data, max_length)

    def _decompress_zstd(self, data: bytes, max_length: int) -> bytes:
        # zstandard has no output cap, so the input is fed in slices small
        # enough that no slice can decode to more than the remaining budget
        output = bytearray()
        pos = 0
        while pos < len(data) and not self._obj.eof and len(output) < max_length:
            step = max(1, (max_length - len(output)) // ZSTD_MAX_RATIO)
            output += self._obj.decompress(data[pos : pos + step])
            pos += step
        self._tail = data[pos:]
        return bytes(output)

    @property
    def eof(self) -> bool:
        """True once the end-of-stream marker has been decoded."""
        return bool(self._obj.eof)

    @property
    def unused_data(self) -> bytes:
        """Input bytes found after the end of the stream."""
        if self.eof:
            return bytes(self._obj.unused_data) + self._tail
        return b""

    @property
    def has_unconsumed_input(self) -> bool:
        """True if the last call stopped early because of max_length."""
        if self.compression == "gzip":
            return bool(self._obj.unconsumed_tail)
        return bool(self._tail) and not self.eof
