from __future__ import annotations

"""
Soft validation findings.

Findings that should not abort a read (checksum/source mismatches, malformed
secfixes lines, unsupported tar entries, ...) are collected as
ValidationWarning records next to a best-effort result.
"""

import logging

from pydantic import BaseModel, ConfigDict, Field


class ValidationWarning(BaseModel):
    """A non-fatal finding attached to an extraction result."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Stable machine-readable code (e.g. 'checksum-count-mismatch')")
    message: str = Field(..., description="Human readable description")
    context: str | None = Field(None, description="Field, path or line the finding refers to")

    def __str__(self) -> str:
        if self.context:
            return f"{self.code}: {self.message} [{self.context}]"
        return f"{self.code}: {self.message}"


class WarningCollector:
    """Accumulates warnings and mirrors them to a logger."""

    def __init__(self, logger: logging.Logger | None = None):
        """Initialize collector.

        Args:
            logger: Logger to report warnings to (defaults to this module's logger)
        """
        self.logger = logger or logging.getLogger(__name__)
        self.items: list[ValidationWarning] = []

    def add(self, code: str, message: str, context: str | None = None) -> ValidationWarning:
        """Record a warning.

        Args:
            code: Warning code
            message: Description
            context: Optional field/path/line reference

        Returns:
            The recorded ValidationWarning
        """
        warning = ValidationWarning(code=code, message=message, context=context)
        self.items.append(warning)
        self.logger.warning(str(warning))
        return warning

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)
