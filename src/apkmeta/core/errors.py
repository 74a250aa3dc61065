"""Exception hierarchy for package and descriptor extraction.

Container decoding and descriptor evaluation fail in different ways: a
container is structurally broken (or too large), while a descriptor
evaluation times out, has no interpreter, or exits unsuccessfully. Callers
can catch the category (``ContainerError`` / ``EvaluationError``) or the
specific kind. Soft findings are never raised; they are collected as
:class:`apkmeta.core.findings.ValidationWarning`.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ApkmetaError",
    "ContainerError",
    "TruncatedContainer",
    "MalformedHeader",
    "CorruptArchive",
    "MissingControlInfo",
    "UnsupportedEntryKind",
    "DecompressionLimitExceeded",
    "EvaluationError",
    "EvaluationTimeout",
    "InterpreterUnavailable",
    "EvaluationFailed",
]


class ApkmetaError(Exception):
    """Base exception for all extraction failures."""


class ContainerError(ApkmetaError):
    """Raised when an APKv2 container cannot be decoded.

    Args:
        message: Human readable description
        segment_index: Index of the compressed segment (0-based), if known
        offset: Byte offset in the container (or in the segment payload for
            archive errors), if known
    """

    def __init__(
        self,
        message: str,
        *,
        segment_index: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.segment_index = segment_index
        self.offset = offset

    def __str__(self) -> str:
        location = []
        if self.segment_index is not None:
            location.append(f"segment {self.segment_index}")
        if self.offset is not None:
            location.append(f"offset {self.offset}")
        if location:
            return f"{self.message} ({', '.join(location)})"
        return self.message


class TruncatedContainer(ContainerError):
    """Input ended inside a segment or before the mandatory segments."""


class MalformedHeader(ContainerError):
    """A segment does not start with a valid compressed-stream header."""


class CorruptArchive(ContainerError):
    """Tar header checksum mismatch or inconsistent size fields."""


class MissingControlInfo(ContainerError):
    """The control segment has no .PKGINFO entry."""


class UnsupportedEntryKind(ContainerError):
    """Tar entry type outside the recognised set (policy "error" only)."""

    def __init__(self, message: str, *, entry_type: bytes = b"", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.entry_type = entry_type


class DecompressionLimitExceeded(ContainerError):
    """A segment decompresses to more bytes than the configured cap."""

    def __init__(self, message: str, *, limit: int, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.limit = limit


class EvaluationError(ApkmetaError):
    """Base exception for APKBUILD evaluation failures."""


class EvaluationTimeout(EvaluationError):
    """The shell did not finish before the deadline and was killed."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"exceeded timeout of {timeout:g} s")
        self.timeout = timeout


class InterpreterUnavailable(EvaluationError):
    """No usable shell interpreter was found."""

    def __init__(self, shell: str, reason: str = "not found") -> None:
        super().__init__(f"failed to execute shell '{shell}': {reason}")
        self.shell = shell


class EvaluationFailed(EvaluationError):
    """The shell exited unsuccessfully or produced unusable output."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        detail = stderr.strip()
        super().__init__(f"{message}: '{detail}'" if detail else message)
        self.returncode = returncode
        self.stderr = stderr
