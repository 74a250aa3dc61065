"""
APKBUILD reader.

This module extracts metadata from APKBUILD build descriptors by:
1. Sourcing the APKBUILD in a sandboxed shell (see evaluator)
2. Decoding the variables the shell reports
3. Reading comment-only fields (maintainer, contributors, secfixes)
4. Parsing dependencies, sources and checksums into typed records
"""

from pathlib import Path
from typing import Optional, Union

from apkmeta.core.config import EvaluatorConfig
from apkmeta.plugins.apkbuild.evaluator import evaluate_descriptor
from apkmeta.plugins.apkbuild.models import BuildDescriptorMetadata, SecurityFixRecord, Trigger
from apkmeta.plugins.apkbuild.parser import decode_records, parse_descriptor
from apkmeta.plugins.base import ReaderPlugin

__all__ = [
    "ApkbuildReader",
    "BuildDescriptorMetadata",
    "SecurityFixRecord",
    "Trigger",
    "read_apkbuild",
]


class ApkbuildReader(ReaderPlugin[BuildDescriptorMetadata]):
    """Reader for APKBUILD files."""

    def __init__(self, config: Optional[EvaluatorConfig] = None):
        """Initialize APKBUILD reader.

        Args:
            config: Evaluator configuration (defaults if None)
        """
        super().__init__(config or EvaluatorConfig())

    def read(self, source: Union[str, Path]) -> BuildDescriptorMetadata:
        """Read metadata from an APKBUILD.

        Args:
            source: Path of the APKBUILD

        Returns:
            BuildDescriptorMetadata

        Raises:
            OSError: If the APKBUILD cannot be read
            EvaluationError: If the shell evaluation fails or times out
        """
        path = Path(source)
        raw_text = path.read_text(encoding="utf-8", errors="replace")

        output = evaluate_descriptor(path, self.config)
        records = decode_records(output.stdout)

        warnings = self._new_warnings()
        metadata = parse_descriptor(
            records,
            raw_text,
            arch_all=self.config.arch_all,
            warnings=warnings,
        )

        self.logger.info(
            f"Read {path}: {metadata.name}-{metadata.full_version}, "
            f"{len(metadata.sources)} sources, {len(metadata.warnings)} warnings "
            f"(evaluated in {output.duration:.3f} s)"
        )
        return metadata


def read_apkbuild(
    path: Union[str, Path], config: Optional[EvaluatorConfig] = None
) -> BuildDescriptorMetadata:
    """Read an APKBUILD (convenience wrapper around ApkbuildReader).

    Args:
        path: Path of the APKBUILD
        config: Evaluator configuration (defaults if None)

    Returns:
        BuildDescriptorMetadata
    """
    return ApkbuildReader(config).read(path)
