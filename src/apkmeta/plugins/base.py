"""
Base reader plugin interface for apkmeta.

This module defines the abstract base class for metadata readers. Each
artifact format (APKv2 package, APKBUILD) implements its own reader.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generic, TypeVar, Union

from apkmeta.core.findings import WarningCollector

ResultT = TypeVar("ResultT")


class ReaderPlugin(ABC, Generic[ResultT]):
    """Abstract base class for metadata readers.

    A reader turns one input artifact into a typed, immutable result that
    carries its own list of validation warnings.
    """

    def __init__(self, config):
        """Initialize reader plugin.

        Args:
            config: Format-specific configuration section
        """
        self.config = config
        self.logger = logging.getLogger(type(self).__module__)

    @abstractmethod
    def read(self, source: Union[str, Path]) -> ResultT:
        """Read metadata from the given artifact.

        Args:
            source: Path of the artifact

        Returns:
            Format-specific result model

        Raises:
            NotImplementedError: Must be implemented by subclass
        """
        raise NotImplementedError

    def _new_warnings(self) -> WarningCollector:
        """Helper: Create a warning collector logging to the plugin's logger."""
        return WarningCollector(self.logger)
