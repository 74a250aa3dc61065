"""
Alpine APKv2 package reader.

This module assembles a PackageContainer from the compressed segments of an
.apk file: an optional signature segment, the control segment with .PKGINFO
and maintainer scripts, and the data segment with the installed files.
"""

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from apkmeta.core.config import ContainerConfig
from apkmeta.core.errors import MissingControlInfo, TruncatedContainer
from apkmeta.core.findings import WarningCollector
from apkmeta.plugins.apk.archive import decode_entries
from apkmeta.plugins.apk.models import (
    SCRIPT_NAMES,
    ArchiveEntry,
    PackageContainer,
    PackageInfo,
    SegmentInfo,
    SignatureInfo,
)
from apkmeta.plugins.apk.pkginfo import parse_pkginfo
from apkmeta.plugins.apk.segments import CompressedSegment, iter_segments
from apkmeta.plugins.base import ReaderPlugin

logger = logging.getLogger(__name__)

__all__ = ["ApkReader", "open_package"]

PKGINFO_NAME = ".PKGINFO"


class ApkReader(ReaderPlugin[PackageContainer]):
    """Reader for APKv2 package files.

    Reads the container in a single forward pass:
    1. Split the input into compressed segments
    2. Detect the signature segment by its ".SIGN." entry
    3. Parse .PKGINFO and collect scripts from the control segment
    4. Build the file inventory from the data segment (unless disabled)
    """

    def __init__(self, config: Optional[ContainerConfig] = None):
        """Initialize APK reader.

        Args:
            config: Container configuration (defaults if None)
        """
        super().__init__(config or ContainerConfig())

    def read(self, source: Union[str, Path, BinaryIO]) -> PackageContainer:
        """Read an APKv2 package.

        Args:
            source: Path of the .apk file or a binary stream positioned at its start

        Returns:
            PackageContainer

        Raises:
            ContainerError: If the container cannot be decoded
        """
        if hasattr(source, "read"):
            return self.read_stream(source)

        with open(source, "rb") as f:
            container = self.read_stream(f)
        self.logger.info(
            f"Read {source}: {container.info.name}-{container.info.full_version}, "
            f"{len(container.files)} files, {len(container.warnings)} warnings"
        )
        return container

    def read_stream(self, stream: BinaryIO) -> PackageContainer:
        """Read an APKv2 package from a binary stream (never seeked)."""
        warnings = self._new_warnings()
        segments = iter_segments(
            stream,
            max_segment_size=self.config.max_segment_size,
            chunk_size=self.config.chunk_size,
        )
        summaries: List[SegmentInfo] = []

        first = next(segments)
        entries = list(self._decode(first, warnings, keep_content=True))

        signature = SignatureInfo()
        if entries and entries[0].path.startswith(".SIGN."):
            signature = self._read_signature(entries, warnings)
            summaries.append(_summary(first, "signature"))

            control = next(segments, None)
            if control is None:
                raise TruncatedContainer(
                    "container holds only a signature segment",
                    segment_index=1,
                    offset=first.offset + first.compressed_size,
                )
            control_entries = list(self._decode(control, warnings, keep_content=True))
        else:
            control, control_entries = first, entries

        summaries.append(_summary(control, "control"))
        info, scripts = self._read_control(control, control_entries, warnings)

        files: List[ArchiveEntry] = []
        if self.config.read_files:
            data = next(segments, None)
            if data is not None:
                summaries.append(_summary(data, "data"))
                files = list(self._decode(data, warnings, keep_content=self.config.keep_content))
                self._report_extra_segments(segments, summaries, warnings)
        else:
            logger.debug("Skipping data segment (read_files disabled)")

        return PackageContainer(
            signature=signature,
            info=info,
            scripts=scripts,
            control_entries=control_entries,
            files=files,
            segments=summaries,
            warnings=warnings.items,
        )

    def _decode(
        self, segment: CompressedSegment, warnings: WarningCollector, keep_content: bool
    ) -> Iterator[ArchiveEntry]:
        return decode_entries(
            segment,
            warnings=warnings,
            unsupported_policy=self.config.unsupported_entry_policy,
            keep_content=keep_content,
        )

    def _read_signature(self, entries: List[ArchiveEntry], warnings: WarningCollector) -> SignatureInfo:
        signature = SignatureInfo.from_entry(entries[0])
        for entry in entries[1:]:
            warnings.add(
                "extra-signature-entry",
                f"signature segment holds more than one entry: '{entry.path}'",
                context=entry.path,
            )
        logger.debug(f"Signature: {signature.algorithm} by {signature.key_name}")
        return signature

    def _read_control(
        self,
        segment: CompressedSegment,
        entries: List[ArchiveEntry],
        warnings: WarningCollector,
    ) -> tuple[PackageInfo, List[str]]:
        pkginfo_entry = None
        scripts = []

        for entry in entries:
            if "/" in entry.path:
                warnings.add(
                    "malformed-control-entry",
                    f"control entry is not a top-level file: '{entry.path}'",
                    context=entry.path,
                )
            elif entry.path == PKGINFO_NAME:
                pkginfo_entry = entry
            elif entry.path.startswith(".") and entry.path[1:] in SCRIPT_NAMES:
                scripts.append(entry.path[1:])

        if pkginfo_entry is None or pkginfo_entry.content is None:
            raise MissingControlInfo(
                "control segment has no .PKGINFO entry",
                segment_index=segment.index,
                offset=segment.offset,
            )

        try:
            text = pkginfo_entry.content.decode("utf-8")
        except UnicodeDecodeError as e:
            warnings.add("invalid-encoding", f".PKGINFO is not valid UTF-8: {e}", context=PKGINFO_NAME)
            text = pkginfo_entry.content.decode("utf-8", errors="replace")
        return parse_pkginfo(text, warnings), scripts

    def _report_extra_segments(
        self,
        segments: Iterator[CompressedSegment],
        summaries: List[SegmentInfo],
        warnings: WarningCollector,
    ) -> None:
        for segment in segments:
            summaries.append(_summary(segment, "extra"))
            warnings.add(
                "extra-segment",
                f"ignoring segment {segment.index} after the data segment",
                context=f"offset {segment.offset}",
            )


def _summary(segment: CompressedSegment, role: str) -> SegmentInfo:
    return SegmentInfo(
        index=segment.index,
        role=role,
        offset=segment.offset,
        compressed_size=segment.compressed_size,
        size=segment.size,
        compression=segment.compression,
    )


def open_package(
    source: Union[str, Path, BinaryIO], config: Optional[ContainerConfig] = None
) -> PackageContainer:
    """Read an APKv2 package (convenience wrapper around ApkReader).

    Args:
        source: Path of the .apk file or a binary stream
        config: Container configuration (defaults if None)

    Returns:
        PackageContainer
    """
    return ApkReader(config).read(source)
