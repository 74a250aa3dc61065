from __future__ import annotations

"""Centralized output handling for the command line."""

import json
from enum import Enum
from typing import Any

from rich.console import Console

from apkmeta.core.findings import ValidationWarning


class OutputLevel(Enum):
    """Output verbosity level."""

    QUIET = 0  # Only the result and errors
    NORMAL = 1  # Result plus validation warnings
    VERBOSE = 2  # All details


class ResultOutputter:
    """Centralized output handler for extraction results.

    The result document goes to stdout; warnings, details and errors go to
    stderr so stdout stays machine readable.
    """

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL, pretty: bool = False):
        """Initialize result outputter.

        Args:
            level: Output verbosity level
            pretty: Indent and highlight the JSON document
        """
        self.level = level
        self.pretty = pretty
        # Field values are printed verbatim: no ":name:" emoji codes
        self.console = Console(soft_wrap=True, emoji=False)
        self.err_console = Console(stderr=True, emoji=False)

    def document(self, data: dict[str, Any]) -> None:
        """Print a result document as JSON.

        Args:
            data: JSON-compatible data (model_dump(mode="json"))
        """
        if self.pretty:
            self.console.print_json(data=data, indent=2)
        else:
            self.console.print(
                json.dumps(data, ensure_ascii=False), markup=False, emoji=False, highlight=False
            )

    def warnings(self, warnings: list[ValidationWarning]) -> None:
        """Show validation warnings.

        Args:
            warnings: Warnings attached to a result
        """
        if self.level == OutputLevel.QUIET:
            return

        for warning in warnings:
            self.err_console.print(f"⚠️  {warning}", style="yellow", markup=False)

    def verbose(self, message: str) -> None:
        """Show verbose message.

        Args:
            message: Verbose message
        """
        if self.level != OutputLevel.VERBOSE:
            return

        self.err_console.print(message, markup=False)

    def error(self, message: str) -> None:
        """Show error message (always shown, even in quiet mode).

        Args:
            message: Error message
        """
        self.err_console.print(f"✗ apkmeta: {message}", style="red", markup=False)

    def summary(self, **stats: Any) -> None:
        """Show summary statistics.

        Args:
            **stats: Statistics as key-value pairs
        """
        if self.level != OutputLevel.VERBOSE:
            return

        self.err_console.print("=== Summary ===", style="bold")
        for key, value in stats.items():
            display_key = key.replace("_", " ").title()
            self.err_console.print(f"  {display_key}: {value}", markup=False)
