"""
Core functionality for apkmeta.

This package provides shared services: configuration, errors, validation
warnings and the dependency/checksum parsing used by both readers.
"""

from apkmeta.core.config import (
    ContainerConfig,
    ConfigLoader,
    EvaluatorConfig,
    GlobalConfig,
    create_example_config,
    load_config,
)
from apkmeta.core.dependency import DependencyConstraint
from apkmeta.core.findings import ValidationWarning, WarningCollector

__all__ = [
    "ConfigLoader",
    "ContainerConfig",
    "DependencyConstraint",
    "EvaluatorConfig",
    "GlobalConfig",
    "ValidationWarning",
    "WarningCollector",
    "create_example_config",
    "load_config",
]
