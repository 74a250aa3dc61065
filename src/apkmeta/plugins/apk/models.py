from __future__ import annotations

"""
APKv2 package container models.

This module contains Pydantic models for the metadata read from an APKv2
package file: the archive entries of each segment, the parsed .PKGINFO,
the signature and the assembled container.
"""

import base64
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from apkmeta.core.dependency import DependencyConstraint
from apkmeta.core.findings import ValidationWarning
from apkmeta.plugins.apk.compression import CompressionFormat

# Maintainer scripts apk-tools runs from the control segment
SCRIPT_NAMES = (
    "pre-install",
    "post-install",
    "pre-upgrade",
    "post-upgrade",
    "pre-deinstall",
    "post-deinstall",
)


class EntryKind(str, Enum):
    """Kind of a tar entry."""

    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    CHAR_DEVICE = "char-device"
    BLOCK_DEVICE = "block-device"
    FIFO = "fifo"


class ArchiveEntry(BaseModel):
    """One entry of a segment's tar archive.

    Paths are relative and slash separated; "./" and leading "/" are
    stripped. Extended attribute values are raw bytes and are serialised as
    base64 text.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Relative path (never contains '..')")
    kind: EntryKind = Field(..., description="Entry kind")
    link_target: str | None = Field(None, description="Target of symlinks and hardlinks")
    size: int = Field(0, description="Content size in bytes (regular files)")
    mode: int = Field(0o644, description="Permission bits")
    uid: int = 0
    gid: int = 0
    uname: str = "root"
    gname: str = "root"
    mtime: int = 0
    device: tuple[int, int] | None = Field(None, description="(major, minor) for device nodes")
    digest: str | None = Field(None, description="SHA-1 digest from the APK-TOOLS.checksum.SHA1 record")
    xattrs: dict[str, bytes] = Field(default_factory=dict, description="Extended attributes")
    content: bytes | None = Field(None, exclude=True, repr=False, description="File content")

    @field_serializer("mode")
    def serialize_mode(self, mode: int) -> str:
        return f"0{mode:o}"

    @field_serializer("xattrs")
    def serialize_xattrs(self, xattrs: dict[str, bytes]) -> dict[str, str]:
        return {name: base64.b64encode(value).decode("ascii") for name, value in xattrs.items()}


class SignatureInfo(BaseModel):
    """Signature segment summary. The signature itself is never verified."""

    model_config = ConfigDict(frozen=True)

    present: bool = False
    algorithm: str | None = Field(None, description="Signature scheme, e.g. RSA or RSA256")
    key_name: str | None = Field(None, description="Signer key file name, e.g. alpine-devel@...rsa.pub")
    signature: bytes | None = Field(None, exclude=True, repr=False)

    @classmethod
    def from_entry(cls, entry: ArchiveEntry) -> SignatureInfo | None:
        """Build from a ".SIGN.<ALG>.<keyname>" entry, None for other names."""
        if not entry.path.startswith(".SIGN."):
            return None
        algorithm, sep, key_name = entry.path[len(".SIGN.") :].partition(".")
        if not sep:
            return cls(present=True, algorithm=algorithm or None, signature=entry.content)
        return cls(present=True, algorithm=algorithm, key_name=key_name, signature=entry.content)


class SegmentInfo(BaseModel):
    """Position and size of a compressed segment (payload not included)."""

    model_config = ConfigDict(frozen=True)

    index: int
    role: str = Field(..., description="signature, control, data or extra")
    offset: int = Field(..., description="Offset of the stream header in the container")
    compressed_size: int
    size: int = Field(..., description="Decompressed size")
    compression: CompressionFormat


class PackageInfo(BaseModel):
    """Metadata from the control segment's .PKGINFO file.

    Optional fields default to empty values; unknown keys are kept in
    ``extra``.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field("", description="pkgname")
    version: str = Field("", description="pkgver without the -rN suffix")
    release: int | None = Field(None, description="N from the -rN suffix")
    full_version: str = Field("", description="pkgver as written (version-rN)")
    arch: str | None = None
    license: str | None = None
    description: str | None = Field(None, description="pkgdesc")
    url: str | None = None
    origin: str | None = None
    maintainer: str | None = None
    packager: str | None = None
    commit: str | None = None
    build_date: int | None = Field(None, description="builddate (Unix timestamp)")
    installed_size: int | None = Field(None, description="size (bytes when installed)")
    data_hash: str | None = Field(None, description="datahash (SHA-256 of the data segment)")
    depends: list[DependencyConstraint] = Field(default_factory=list, description="Dependencies and conflicts")
    provides: list[DependencyConstraint] = Field(default_factory=list)
    replaces: list[DependencyConstraint] = Field(default_factory=list)
    install_if: list[DependencyConstraint] = Field(default_factory=list)
    triggers: list[str] = Field(default_factory=list, description="Monitored directories")
    provider_priority: int | None = None
    replaces_priority: int | None = None
    extra: dict[str, list[str]] = Field(default_factory=dict, description="Unrecognised keys")


class PackageContainer(BaseModel):
    """A decoded APKv2 package."""

    model_config = ConfigDict(frozen=True)

    signature: SignatureInfo = Field(default_factory=SignatureInfo)
    info: PackageInfo
    scripts: list[str] = Field(default_factory=list, description="Maintainer scripts (e.g. post-install)")
    control_entries: list[ArchiveEntry] = Field(default_factory=list)
    files: list[ArchiveEntry] = Field(default_factory=list, description="Data segment inventory")
    segments: list[SegmentInfo] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)

    def get_file(self, path: str) -> ArchiveEntry | None:
        """Look up a data segment entry by its relative path."""
        path = path.lstrip("/")
        for entry in self.files:
            if entry.path == path:
                return entry
        return None
