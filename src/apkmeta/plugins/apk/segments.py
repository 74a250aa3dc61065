"""
Demultiplexer for APKv2 containers.

An APKv2 file is a plain concatenation of independently compressed tar
streams with no index. Each stream ends where its decompressor reports the
end-of-stream marker; the bytes left over start the next stream.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import BinaryIO

from apkmeta.core.errors import (
    CorruptArchive,
    DecompressionLimitExceeded,
    MalformedHeader,
    TruncatedContainer,
)
from apkmeta.plugins.apk.compression import (
    DECODER_ERRORS,
    MAGIC_SIZE,
    CompressionFormat,
    StreamDecoder,
    detect_compression,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

# Input is handed to the decoder in slices of this size so the output cap is
# checked before a single call can expand into a huge buffer.
FEED_SIZE = 16 * 1024


@dataclass(frozen=True)
class CompressedSegment:
    """One compressed stream of the container, already decompressed."""

    index: int
    offset: int  # offset of the stream header in the container
    compressed_size: int
    compression: CompressionFormat
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        """Decompressed size in bytes."""
        return len(self.data)


class _Reader:
    """Forward-only buffered reader over a binary stream."""

    def __init__(self, stream: BinaryIO, chunk_size: int):
        self.stream = stream
        self.chunk_size = chunk_size
        self.buffer = b""
        self.offset = 0  # container offset of buffer[0]
        self.exhausted = False

    def fill(self, size: int) -> None:
        """Read until at least ``size`` bytes are buffered or input ends."""
        while len(self.buffer) < size and not self.exhausted:
            chunk = self.stream.read(self.chunk_size)
            if not chunk:
                self.exhausted = True
                break
            self.buffer += chunk

    def take(self) -> bytes:
        """Return the buffered bytes (reading a chunk if empty)."""
        if not self.buffer:
            self.fill(1)
        data, self.buffer = self.buffer, b""
        self.offset += len(data)
        return data

    def give_back(self, data: bytes) -> None:
        """Push unconsumed bytes back in front of the buffer."""
        self.buffer = data + self.buffer
        self.offset -= len(data)

    def skip_padding(self) -> int | None:
        """Consume NUL padding up to end of input.

        Returns the container offset of the first non-NUL byte, or None if
        only padding was left.
        """
        while True:
            stripped = self.buffer.lstrip(b"\0")
            if stripped:
                return self.offset + len(self.buffer) - len(stripped)
            self.offset += len(self.buffer)
            self.buffer = b""
            self.fill(1)
            if not self.buffer:
                return None


def iter_segments(
    stream: BinaryIO,
    *,
    max_segment_size: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[CompressedSegment]:
    """Split a container stream into its compressed segments.

    Single forward pass; the stream is never seeked.

    Args:
        stream: Binary stream positioned at the start of the container
        max_segment_size: Cap on decompressed bytes per segment (None = unlimited)
        chunk_size: Number of bytes read from the stream at a time

    Yields:
        CompressedSegment for each stream, in container order

    Raises:
        TruncatedContainer: Input is empty or ends inside a segment
        MalformedHeader: A segment does not start with a known stream header
        CorruptArchive: The compressed data of a segment is corrupt
        DecompressionLimitExceeded: A segment exceeds max_segment_size
    """
    reader = _Reader(stream, chunk_size)
    index = 0

    while True:
        reader.fill(MAGIC_SIZE)
        if not reader.buffer:
            break
        if not reader.buffer[:MAGIC_SIZE].strip(b"\0"):
            garbage_at = reader.skip_padding()
            if garbage_at is None:
                break
            raise MalformedHeader(
                "unexpected data after trailing padding",
                segment_index=index,
                offset=garbage_at,
            )

        compression = detect_compression(reader.buffer)
        if compression is None:
            raise MalformedHeader(
                f"no compressed stream header (found {reader.buffer[:MAGIC_SIZE].hex()})",
                segment_index=index,
                offset=reader.offset,
            )

        segment = _decode_segment(reader, index, compression, max_segment_size)
        logger.debug(
            f"Segment {index}: {compression}, {segment.compressed_size} bytes at offset "
            f"{segment.offset}, {segment.size} bytes decompressed"
        )
        yield segment
        index += 1

    if index == 0:
        raise TruncatedContainer("no compressed segment found", segment_index=0, offset=0)


def _decode_segment(
    reader: _Reader,
    index: int,
    compression: CompressionFormat,
    max_segment_size: int | None,
) -> CompressedSegment:
    """Decompress one stream starting at the reader's current position."""
    decoder = StreamDecoder(compression)
    start = reader.offset
    output = bytearray()
    consumed = 0
    pending = b""

    while not decoder.eof:
        if not pending:
            pending = reader.take()
            if not pending:
                raise TruncatedContainer(
                    "input ended inside a compressed segment",
                    segment_index=index,
                    offset=start + consumed,
                )

        piece, pending = pending[:FEED_SIZE], pending[FEED_SIZE:]
        max_length = 0
        if max_segment_size is not None:
            max_length = max_segment_size - len(output) + 1

        try:
            output += decoder.decompress(piece, max_length)
        except DECODER_ERRORS as e:
            error_cls = MalformedHeader if not output else CorruptArchive
            raise error_cls(
                f"invalid {compression} stream: {e}",
                segment_index=index,
                offset=start if not output else start + consumed,
            ) from e
        consumed += len(piece)

        if max_segment_size is not None and (
            len(output) > max_segment_size or decoder.has_unconsumed_input
        ):
            raise DecompressionLimitExceeded(
                f"segment decompresses to more than {max_segment_size} bytes",
                limit=max_segment_size,
                segment_index=index,
                offset=start,
            )

    leftover = decoder.unused_data + pending
    reader.give_back(leftover)

    return CompressedSegment(
        index=index,
        offset=start,
        compressed_size=reader.offset - start,
        compression=compression,
        data=bytes(output),
    )
