"""Shared helpers for building APKv2 containers and APKBUILDs in memory."""

from __future__ import annotations

import gzip
import hashlib
import io
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import zstandard as zstd

FIXTURES_DIR = Path(__file__).parent / "fixtures"

SIGNATURE_NAME = ".SIGN.RSA.alpine-devel@lists.alpinelinux.org-6165ee59.rsa.pub"

SAMPLE_PKGINFO = """\
# Generated by abuild 3.10.0
# using fakeroot version 1.31
pkgname = sample
pkgver = 1.2.3-r2
pkgdesc = A sample aport for testing
url = https://example.org/sample
builddate = 1672531200
packager = Buildozer <alpine-devel@lists.alpinelinux.org>
size = 8192
arch = x86_64
origin = sample
commit = 0123456789abcdef0123456789abcdef01234567
maintainer = Jakub Jirutka <jakub@jirutka.cz>
license = ISC and BSD-2-Clause and BSD-3-Clause
replaces = sample2
provider_priority = 100
depend = ruby>=3.0
depend = !sample-legacy
depend = so:libc.musl-x86_64.so.1
provides = sample2=1.2.3-r2
provides = cmd:sample=1.2.3-r2
install_if = sample=1.2.3-r2 ruby
triggers = /usr/share/sample/*
datahash = 4a21ef3b5cfa8e5e5c0d2a6a8a7a4f4cbc0b6a7e3f3d2b4c3f0c5e7d9b1a2c3d
"""

SAMPLE_SCRIPT = b"#!/bin/sh\necho installed\n"

SAMPLE_BINARY = b"#!/bin/sh\necho sample\n"


@dataclass
class Member:
    """A tar member to write into a test segment."""

    name: str
    data: bytes = b""
    type: bytes = tarfile.REGTYPE
    linkname: str = ""
    mode: int = 0o644
    pax: dict[str, str] = field(default_factory=dict)
    devmajor: int = 0
    devminor: int = 0


def build_tar(members: list[Member], *, cut_end: bool = False) -> bytes:
    """Write members into a PAX tar; cut_end drops the end-of-archive blocks."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for member in members:
            info = tarfile.TarInfo(member.name)
            info.type = member.type
            info.mode = member.mode
            info.mtime = 1672531200
            info.uname = "root"
            info.gname = "root"
            info.linkname = member.linkname
            info.pax_headers = dict(member.pax)
            info.devmajor = member.devmajor
            info.devminor = member.devminor
            if member.type == tarfile.REGTYPE:
                info.size = len(member.data)
                tar.addfile(info, io.BytesIO(member.data))
            else:
                tar.addfile(info)
        end = tar.offset
    data = buf.getvalue()
    return data[:end] if cut_end else data


def compress(data: bytes, compression: str = "gzip") -> bytes:
    """Compress one segment payload as a single stream."""
    if compression == "gzip":
        return gzip.compress(data)
    return zstd.ZstdCompressor().compress(data)


def sample_files() -> list[Member]:
    """Data segment members of the sample package."""
    return [
        Member("usr/", type=tarfile.DIRTYPE, mode=0o755),
        Member("usr/bin/", type=tarfile.DIRTYPE, mode=0o755),
        Member(
            "usr/bin/sample",
            data=SAMPLE_BINARY,
            mode=0o755,
            pax={
                "APK-TOOLS.checksum.SHA1": hashlib.sha1(SAMPLE_BINARY).hexdigest(),
                "SCHILY.xattr.user.comment": "hello",
            },
        ),
        Member("usr/bin/sample2", type=tarfile.SYMTYPE, linkname="sample", mode=0o777),
        Member("usr/share/sample/", type=tarfile.DIRTYPE, mode=0o755),
        Member("usr/share/sample/README", data=b"sample readme\n"),
    ]


def build_segments(
    *,
    pkginfo: str | None = SAMPLE_PKGINFO,
    files: list[Member] | None = None,
    signed: bool = True,
    compression: str = "gzip",
    control_extra: list[Member] | None = None,
) -> list[bytes]:
    """Build the compressed segments of a package."""
    segments = []
    if signed:
        signature = build_tar([Member(SIGNATURE_NAME, data=b"\x01\x02signature")], cut_end=True)
        segments.append(compress(signature, compression))

    control = []
    if pkginfo is not None:
        control.append(Member(".PKGINFO", data=pkginfo.encode()))
    control.append(Member(".post-install", data=SAMPLE_SCRIPT, mode=0o755))
    control.extend(control_extra or [])
    segments.append(compress(build_tar(control, cut_end=True), compression))

    if files is None:
        files = sample_files()
    segments.append(compress(build_tar(files), compression))
    return segments


def build_apk(**kwargs) -> bytes:
    """Build a complete APKv2 container."""
    return b"".join(build_segments(**kwargs))


@pytest.fixture
def sample_apk() -> bytes:
    """A signed gzip APKv2 container of the sample package."""
    return build_apk()


@pytest.fixture
def sample_apk_path(tmp_path: Path, sample_apk: bytes) -> Path:
    """The sample container written to disk."""
    path = tmp_path / "sample-1.2.3-r2.apk"
    path.write_bytes(sample_apk)
    return path


@pytest.fixture
def sample_apkbuild(tmp_path: Path) -> Path:
    """A copy of the sample aport in a temporary directory."""
    target = tmp_path / "sample"
    shutil.copytree(FIXTURES_DIR / "sample", target)
    return target / "APKBUILD"


@pytest.fixture
def write_apkbuild(tmp_path: Path):
    """Factory writing an APKBUILD with the given body into its own directory."""
    counter = iter(range(1000))

    def write(body: str) -> Path:
        aport = tmp_path / f"aport{next(counter)}"
        aport.mkdir()
        path = aport / "APKBUILD"
        path.write_text(body)
        return path

    return write


requires_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="no POSIX shell available")
