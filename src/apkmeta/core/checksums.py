"""
Source and checksum pairing.

APKBUILD ``source`` items are paired with the lines of ``sha512sums`` (or
``sha256sums``) strictly by position: line *i* belongs to source *i*. The
filename written after each digest is only cross-checked, never used to
reorder.
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from apkmeta.core.findings import WarningCollector

logger = logging.getLogger(__name__)

ChecksumAlgorithm = Literal["sha512", "sha256"]


class ChecksumEntry(BaseModel):
    """One line of a sha512sums/sha256sums block."""

    model_config = ConfigDict(frozen=True)

    digest: str
    filename: str | None = None


class SourceEntry(BaseModel):
    """A source file of an APKBUILD."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="File name the source is saved as")
    uri: str = Field(..., description="Remote URL or path relative to the APKBUILD directory")
    remote: bool = Field(False, description="True if uri is a URL")
    checksum: str | None = Field(None, description="Hex digest paired by position")
    checksum_algorithm: ChecksumAlgorithm | None = None

    @classmethod
    def from_item(cls, item: str) -> SourceEntry:
        """Build an entry from a source item ("name::uri", URL or local file)."""
        if "::" in item:
            name, uri = item.split("::", 1)
        else:
            uri = item
            name = item.rstrip("/").rsplit("/", 1)[-1]
        return cls(name=name, uri=uri, remote="://" in uri)


def parse_checksum_lines(text: str) -> list[ChecksumEntry]:
    """Parse a checksum block into entries.

    Each non-empty line is "<digest> [<filename>]". Blank lines are ignored.
    """
    entries = []
    for line in text.splitlines():
        parts = line.split(None, 1)
        if not parts:
            continue
        filename = parts[1].strip() if len(parts) > 1 else None
        entries.append(ChecksumEntry(digest=parts[0], filename=filename or None))
    return entries


def pair_sources(
    items: list[str],
    checksums: list[ChecksumEntry],
    algorithm: ChecksumAlgorithm | None,
    warnings: WarningCollector,
) -> list[SourceEntry]:
    """Pair source items with checksum lines by position.

    Args:
        items: Source items in declaration order
        checksums: Parsed checksum lines in declaration order
        algorithm: Algorithm of the checksum block (None if there is none)
        warnings: Collector for name and count mismatches

    Returns:
        SourceEntry list in source order; unpaired sources have checksum None
    """
    sources = [SourceEntry.from_item(item) for item in items]

    if checksums and len(checksums) != len(sources):
        warnings.add(
            "checksum-count-mismatch",
            f"{len(sources)} source(s) but {len(checksums)} {algorithm}sums line(s)",
            context=f"{algorithm}sums",
        )

    paired = []
    for i, source in enumerate(sources):
        if i >= len(checksums):
            paired.append(source)
            continue

        entry = checksums[i]
        if entry.filename is not None and entry.filename != source.name:
            warnings.add(
                "checksum-name-mismatch",
                f"checksum line {i + 1} names '{entry.filename}', expected '{source.name}'",
                context=f"{algorithm}sums",
            )
        paired.append(
            source.model_copy(update={"checksum": entry.digest, "checksum_algorithm": algorithm})
        )

    logger.debug(f"Paired {min(len(sources), len(checksums))} of {len(sources)} source(s)")
    return paired
