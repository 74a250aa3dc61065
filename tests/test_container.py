"""Tests for reading complete APKv2 containers."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from apkmeta.core.config import ContainerConfig
from apkmeta.core.errors import (
    DecompressionLimitExceeded,
    MissingControlInfo,
    TruncatedContainer,
    UnsupportedEntryKind,
)
from apkmeta.plugins.apk import ApkReader, open_package
from conftest import (
    SAMPLE_PKGINFO,
    SAMPLE_SCRIPT,
    SIGNATURE_NAME,
    Member,
    build_apk,
    build_segments,
    build_tar,
    compress,
)


class TestSignedContainer:
    """Test reading the signed sample package."""

    def test_segments(self) -> None:
        """Test segment roles and offsets."""
        parts = build_segments()
        container = open_package(io.BytesIO(b"".join(parts)))

        assert [s.role for s in container.segments] == ["signature", "control", "data"]
        assert [s.offset for s in container.segments] == [0, len(parts[0]), len(parts[0]) + len(parts[1])]
        assert [s.compressed_size for s in container.segments] == [len(p) for p in parts]
        assert all(s.compression == "gzip" for s in container.segments)

    def test_signature(self, sample_apk: bytes) -> None:
        """Test the signature summary."""
        container = open_package(io.BytesIO(sample_apk))

        assert container.signature.present
        assert container.signature.algorithm == "RSA"
        assert container.signature.key_name == "alpine-devel@lists.alpinelinux.org-6165ee59.rsa.pub"
        assert container.signature.signature == b"\x01\x02signature"

    def test_package_info(self, sample_apk: bytes) -> None:
        """Test the parsed .PKGINFO."""
        info = open_package(io.BytesIO(sample_apk)).info

        assert info.name == "sample"
        assert info.version == "1.2.3"
        assert info.release == 2
        assert info.full_version == "1.2.3-r2"
        assert info.arch == "x86_64"
        assert info.build_date == 1672531200
        assert info.installed_size == 8192
        assert [str(d) for d in info.depends] == ["ruby>=3.0", "!sample-legacy", "so:libc.musl-x86_64.so.1"]

    def test_scripts_and_control_entries(self, sample_apk: bytes) -> None:
        """Test that maintainer scripts are listed with their content kept."""
        container = open_package(io.BytesIO(sample_apk))

        assert container.scripts == ["post-install"]
        assert [e.path for e in container.control_entries] == [".PKGINFO", ".post-install"]
        assert container.control_entries[1].content == SAMPLE_SCRIPT

    def test_file_inventory(self, sample_apk: bytes) -> None:
        """Test the data segment inventory."""
        container = open_package(io.BytesIO(sample_apk))

        assert len(container.files) == 6
        assert container.get_file("/usr/bin/sample").mode == 0o755
        assert container.get_file("usr/bin/sample2").link_target == "sample"
        assert container.get_file("usr/bin/missing") is None
        assert container.warnings == []

    def test_read_from_path(self, sample_apk_path: Path) -> None:
        """Test reading from a file path."""
        container = ApkReader().read(sample_apk_path)
        assert container.info.name == "sample"

    def test_json_document(self, sample_apk: bytes) -> None:
        """Test the JSON rendering of a container."""
        document = json.loads(open_package(io.BytesIO(sample_apk)).model_dump_json())
        binary = next(f for f in document["files"] if f["path"] == "usr/bin/sample")

        assert binary["mode"] == "0755"
        assert binary["xattrs"] == {"user.comment": "aGVsbG8="}
        assert binary["kind"] == "regular"
        assert "content" not in binary
        assert "signature" not in document["signature"]
        assert document["info"]["provides"][0] == {
            "name": "sample2",
            "comparator": "=",
            "version": "1.2.3-r2",
            "negated": False,
            "priority": 100,
            "repo_pin": None,
        }


class TestContainerVariants:
    """Test unsigned, zstandard and partial reads."""

    def test_unsigned(self) -> None:
        """Test a container without a signature segment."""
        container = open_package(io.BytesIO(build_apk(signed=False)))

        assert not container.signature.present
        assert [s.role for s in container.segments] == ["control", "data"]
        assert container.info.name == "sample"

    def test_zstandard(self) -> None:
        """Test a container of zstandard segments."""
        container = open_package(io.BytesIO(build_apk(compression="zstandard")))

        assert [s.compression for s in container.segments] == ["zstandard"] * 3
        assert len(container.files) == 6

    def test_without_files(self) -> None:
        """Test that read_files=False stops after the control segment."""
        # Garbage in place of the data segment is never reached
        data = b"".join(build_segments()[:2]) + b"not a stream"

        container = open_package(io.BytesIO(data), ContainerConfig(read_files=False))

        assert container.files == []
        assert [s.role for s in container.segments] == ["signature", "control"]

    def test_without_content(self) -> None:
        """Test that keep_content=False drops data contents but keeps control contents."""
        container = open_package(io.BytesIO(build_apk()), ContainerConfig(keep_content=False))

        assert container.get_file("usr/bin/sample").content is None
        assert container.control_entries[0].content is not None

    def test_missing_data_segment(self) -> None:
        """Test a container that ends after the control segment."""
        container = open_package(io.BytesIO(b"".join(build_segments()[:2])))

        assert container.files == []
        assert [s.role for s in container.segments] == ["signature", "control"]

    def test_extra_segment(self) -> None:
        """Test that segments after the data segment are reported."""
        extra = compress(build_tar([Member("junk", data=b"junk")]))
        container = open_package(io.BytesIO(build_apk() + extra))

        assert [s.role for s in container.segments] == ["signature", "control", "data", "extra"]
        assert [w.code for w in container.warnings] == ["extra-segment"]

    def test_extra_signature_entry(self) -> None:
        """Test a signature segment with more than one entry."""
        signature = build_tar(
            [Member(SIGNATURE_NAME, data=b"sig"), Member(".SIGN.RSA.other.rsa.pub", data=b"sig")],
            cut_end=True,
        )
        data = compress(signature) + b"".join(build_segments(signed=False))
        container = open_package(io.BytesIO(data))

        assert container.signature.key_name == "alpine-devel@lists.alpinelinux.org-6165ee59.rsa.pub"
        assert [w.code for w in container.warnings] == ["extra-signature-entry"]

    def test_unsupported_entry_strict(self) -> None:
        """Test policy "error" for unknown entry types in the data segment."""
        files = [Member("usr/bin/a", data=b"a"), Member("volume", type=b"V")]
        data = build_apk(files=files)

        container = open_package(io.BytesIO(data))
        assert [w.code for w in container.warnings] == ["unsupported-entry"]

        with pytest.raises(UnsupportedEntryKind):
            open_package(io.BytesIO(data), ContainerConfig(unsupported_entry_policy="error"))

    def test_nested_control_entry(self) -> None:
        """Test that control entries in subdirectories are reported."""
        data = build_apk(control_extra=[Member("var/lib/x", data=b"x")])
        container = open_package(io.BytesIO(data))

        assert [w.code for w in container.warnings] == ["malformed-control-entry"]

    def test_unknown_script_name(self) -> None:
        """Test that only the known maintainer script names are listed."""
        data = build_apk(control_extra=[Member(".trigger", data=b"#!/bin/sh\n"), Member(".pre-upgrade", data=b"")])
        container = open_package(io.BytesIO(data))

        assert container.scripts == ["post-install", "pre-upgrade"]

    def test_pkginfo_not_utf8(self) -> None:
        """Invalid bytes in .PKGINFO are replaced and reported."""
        pkginfo = SAMPLE_PKGINFO.encode() + b"# built in Caf\xe9 Flynn\n"
        data = build_apk(pkginfo=None, control_extra=[Member(".PKGINFO", data=pkginfo)])
        container = open_package(io.BytesIO(data))

        assert container.info.name == "sample"
        assert [w.code for w in container.warnings] == ["invalid-encoding"]
        assert container.warnings[0].context == ".PKGINFO"
        container.model_dump_json()

    def test_file_name_not_utf8(self) -> None:
        """A data segment file name with invalid bytes still renders as JSON."""
        data = build_apk(files=[Member("usr/bin/caf\udce9", data=b"x")])
        container = open_package(io.BytesIO(data))

        assert [f.path for f in container.files] == ["usr/bin/caf\\xe9"]
        assert [w.code for w in container.warnings] == ["invalid-path-encoding"]
        assert json.loads(container.model_dump_json())["files"][0]["path"] == "usr/bin/caf\\xe9"


class TestContainerErrors:
    """Test fatal container errors."""

    def test_missing_pkginfo(self) -> None:
        """Test a control segment without .PKGINFO."""
        with pytest.raises(MissingControlInfo) as excinfo:
            open_package(io.BytesIO(build_apk(pkginfo=None)))
        assert excinfo.value.segment_index == 1

    def test_signature_only(self) -> None:
        """Test a container holding only the signature segment."""
        with pytest.raises(TruncatedContainer, match="only a signature segment"):
            open_package(io.BytesIO(build_segments()[0]))

    def test_truncated(self) -> None:
        """Test a container cut in the middle of the control segment."""
        parts = build_segments()
        data = parts[0] + parts[1][: len(parts[1]) // 2]

        with pytest.raises(TruncatedContainer) as excinfo:
            open_package(io.BytesIO(data))
        assert excinfo.value.segment_index == 1

    def test_empty(self) -> None:
        """Test an empty input."""
        with pytest.raises(TruncatedContainer):
            open_package(io.BytesIO(b""))

    def test_decompression_limit(self) -> None:
        """Test the per-segment decompression cap."""
        files = [Member("usr/share/zeros", data=b"\0" * (2 * 1024 * 1024))]
        data = build_apk(files=files)

        with pytest.raises(DecompressionLimitExceeded) as excinfo:
            open_package(io.BytesIO(data), ContainerConfig(max_segment_size=1024 * 1024))
        assert excinfo.value.segment_index == 2

    def test_file_not_found(self, tmp_path: Path) -> None:
        """Test a missing package file."""
        with pytest.raises(FileNotFoundError):
            ApkReader().read(tmp_path / "missing.apk")

