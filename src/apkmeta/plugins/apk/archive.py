"""
Tar entry decoder for decompressed APKv2 segments.

abuild cuts the end-of-archive blocks off the signature and control
segments, so a payload may simply stop after the last entry. ``tarfile``
treats an invalid header after the first one as the end of the archive;
whatever follows the last decoded entry is therefore checked here and must
be NUL padding.
"""

from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Iterator
from typing import Literal

from apkmeta.core.errors import CorruptArchive, UnsupportedEntryKind
from apkmeta.core.findings import WarningCollector
from apkmeta.plugins.apk.models import ArchiveEntry, EntryKind
from apkmeta.plugins.apk.segments import CompressedSegment

logger = logging.getLogger(__name__)

UnsupportedPolicy = Literal["warn", "error"]

# PAX record abuild stores the SHA-1 of each file in
APK_CHECKSUM_RECORD = "APK-TOOLS.checksum.SHA1"
XATTR_RECORD_PREFIX = "SCHILY.xattr."

_KINDS = {
    tarfile.REGTYPE: EntryKind.REGULAR,
    tarfile.AREGTYPE: EntryKind.REGULAR,
    tarfile.CONTTYPE: EntryKind.REGULAR,
    tarfile.DIRTYPE: EntryKind.DIRECTORY,
    tarfile.SYMTYPE: EntryKind.SYMLINK,
    tarfile.LNKTYPE: EntryKind.HARDLINK,
    tarfile.CHRTYPE: EntryKind.CHAR_DEVICE,
    tarfile.BLKTYPE: EntryKind.BLOCK_DEVICE,
    tarfile.FIFOTYPE: EntryKind.FIFO,
}


def normalize_path(name: str) -> str | None:
    """Make a tar member name relative and slash separated.

    Returns:
        Normalized path ("" for the archive root), or None if the name
        contains a ".." component
    """
    parts = [part for part in name.split("/") if part not in ("", ".")]
    if ".." in parts:
        return None
    return "/".join(parts)


def _pax_bytes(value: str) -> bytes:
    # tarfile decodes PAX values with surrogateescape; this restores the raw bytes
    return value.encode("utf-8", "surrogateescape")


def _text(
    value: str, field: str, warnings: WarningCollector, code: str = "invalid-encoding"
) -> str:
    """Replace bytes that are not valid UTF-8 with backslash escapes.

    Every replacement is recorded as a warning.
    """
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        escaped = _pax_bytes(value).decode("utf-8", "backslashreplace")
        warnings.add(code, f"{field} is not valid UTF-8: '{escaped}'", context=escaped)
        return escaped
    return value


def decode_entries(
    segment: CompressedSegment,
    *,
    warnings: WarningCollector,
    unsupported_policy: UnsupportedPolicy = "warn",
    keep_content: bool = True,
) -> Iterator[ArchiveEntry]:
    """Decode the tar entries of one segment.

    Args:
        segment: Decompressed segment
        warnings: Collector for skipped entries
        unsupported_policy: "warn" skips unknown entry types with a warning,
            "error" raises UnsupportedEntryKind
        keep_content: Attach regular file contents to the entries

    Yields:
        ArchiveEntry in archive order

    Raises:
        CorruptArchive: Bad header checksum, sizes past the payload or
            undecodable data after the last entry
        UnsupportedEntryKind: Unknown entry type with policy "error"
    """
    data = segment.data
    if data.count(0) == len(data):
        logger.debug(f"Segment {segment.index} holds no entries")
        return

    buf = io.BytesIO(data)
    try:
        with tarfile.open(fileobj=buf, mode="r:", encoding="utf-8", errors="surrogateescape") as tar:
            for info in tar:
                entry = _to_entry(tar, info, segment, warnings, unsupported_policy, keep_content)
                if entry is not None:
                    yield entry
            end = tar.offset
    except tarfile.TarError as e:
        raise CorruptArchive(f"invalid tar data: {e}", segment_index=segment.index) from e

    if end > len(data):
        raise CorruptArchive(
            "entry size runs past the end of the segment",
            segment_index=segment.index,
            offset=len(data),
        )
    if data[end:].strip(b"\0"):
        raise CorruptArchive(
            "invalid tar header after last entry",
            segment_index=segment.index,
            offset=end,
        )


def _to_entry(
    tar: tarfile.TarFile,
    info: tarfile.TarInfo,
    segment: CompressedSegment,
    warnings: WarningCollector,
    unsupported_policy: UnsupportedPolicy,
    keep_content: bool,
) -> ArchiveEntry | None:
    name = _text(info.name, "entry name", warnings, code="invalid-path-encoding")
    kind = _KINDS.get(info.type)
    if kind is None:
        message = f"unsupported tar entry type {info.type!r} for '{name}'"
        if unsupported_policy == "error":
            raise UnsupportedEntryKind(
                message,
                entry_type=info.type,
                segment_index=segment.index,
                offset=info.offset,
            )
        warnings.add("unsupported-entry", message, context=name)
        return None

    path = normalize_path(name)
    if path is None:
        warnings.add("unsafe-path", f"entry path contains '..': '{name}'", context=name)
        return None
    if not path:
        logger.debug(f"Skipping archive root entry '{name}'")
        return None

    link_target = None
    if kind in (EntryKind.SYMLINK, EntryKind.HARDLINK):
        linkname = _text(
            info.linkname, f"link target of '{path}'", warnings, code="invalid-path-encoding"
        )
        if kind == EntryKind.SYMLINK:
            link_target = linkname
        else:
            link_target = normalize_path(linkname)
            if link_target is None:
                warnings.add(
                    "unsafe-path", f"hardlink target contains '..': '{linkname}'", context=path
                )
                return None

    xattrs = {}
    for key, value in info.pax_headers.items():
        if key.startswith(XATTR_RECORD_PREFIX):
            attr = _text(key[len(XATTR_RECORD_PREFIX) :], f"xattr name on '{path}'", warnings)
            xattrs[attr] = _pax_bytes(value)
    digest = info.pax_headers.get(APK_CHECKSUM_RECORD)
    if digest is not None:
        digest = _text(digest, f"checksum of '{path}'", warnings)

    device = None
    if kind in (EntryKind.CHAR_DEVICE, EntryKind.BLOCK_DEVICE):
        device = (info.devmajor, info.devminor)

    content = None
    if kind == EntryKind.REGULAR and keep_content:
        with tar.extractfile(info) as f:
            content = f.read()

    logger.debug(f"Segment {segment.index}: {kind.value} {path} ({info.size} bytes)")

    return ArchiveEntry(
        path=path,
        kind=kind,
        link_target=link_target,
        size=info.size if kind == EntryKind.REGULAR else 0,
        mode=info.mode & 0o7777,
        uid=info.uid,
        gid=info.gid,
        uname=_text(info.uname, f"owner of '{path}'", warnings) or "root",
        gname=_text(info.gname, f"group of '{path}'", warnings) or "root",
        mtime=int(info.mtime),
        device=device,
        digest=digest,
        xattrs=xattrs,
        content=content,
    )
