"""
Configuration management for apkmeta.

This module provides Pydantic models for configuration validation and
YAML-based configuration loading.
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

# Architectures "all" and "noarch" expand to in an APKBUILD
ARCH_ALL = ["aarch64", "armhf", "armv7", "ppc64le", "riscv64", "s390x", "x86", "x86_64"]

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ContainerConfig(BaseModel):
    """APKv2 container reading limits and behaviour."""

    # Cap on the decompressed size of one segment (None = unlimited)
    max_segment_size: Optional[int] = 512 * 1024 * 1024
    chunk_size: int = 64 * 1024  # Bytes read from the input at a time
    unsupported_entry_policy: str = "warn"  # warn, error
    read_files: bool = True  # Decode the data segment
    keep_content: bool = True  # Keep regular file contents in memory

    @field_validator("max_segment_size")
    @classmethod
    def validate_max_segment_size(cls, v: Optional[int]) -> Optional[int]:
        """Validate decompression cap."""
        if v is not None and v < 1:
            raise ValueError("max_segment_size must be positive (or null for unlimited)")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate read chunk size."""
        if v < 512:
            raise ValueError("chunk_size must be at least 512 bytes")
        return v

    @field_validator("unsupported_entry_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        """Validate unsupported entry policy."""
        valid_policies = ["warn", "error"]
        if v not in valid_policies:
            raise ValueError(f"Invalid unsupported_entry_policy: {v}. Must be one of {valid_policies}")
        return v


class EvaluatorConfig(BaseModel):
    """APKBUILD evaluation settings."""

    shell: str = "/bin/sh"  # POSIX shell used to source the APKBUILD
    timeout: float = 5.0  # Wall-clock limit in seconds (0 = no limit)
    env: Dict[str, str] = Field(default_factory=dict)  # e.g., {"CARCH": "x86_64"}
    inherit_env: bool = False  # Start from the caller's environment
    path: str = "/usr/bin:/bin"  # PATH inside the evaluation
    arch_all: List[str] = Field(default_factory=lambda: list(ARCH_ALL))

    @field_validator("shell")
    @classmethod
    def validate_shell(cls, v: str) -> str:
        """Validate shell."""
        if not v.strip():
            raise ValueError("shell must not be empty")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v < 0:
            raise ValueError("timeout cannot be negative")
        return v

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate environment variable names."""
        for name in v:
            if not _ENV_NAME.fullmatch(name):
                raise ValueError(f"Invalid environment variable name: {name!r}")
        return v


class GlobalConfig(BaseModel):
    """Global apkmeta configuration."""

    container: ContainerConfig = Field(default_factory=ContainerConfig)
    evaluator: EvaluatorConfig = Field(default_factory=EvaluatorConfig)


class ConfigLoader:
    """Configuration file loader."""

    def __init__(self, config_path: Path):
        """Initialize config loader.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = config_path

    def load(self) -> GlobalConfig:
        """Load configuration from YAML file.

        Returns:
            GlobalConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"YAML syntax error in {self.config_path}:\n{e}")

        if not isinstance(config_data, dict):
            raise ValueError(f"Configuration in {self.config_path} must be a mapping")

        try:
            return GlobalConfig(**config_data)
        except Exception as e:
            raise ValueError(f"Configuration validation error in {self.config_path}:\n{e}")


def load_config(config_path: Optional[Path] = None) -> GlobalConfig:
    """Load configuration from file.

    Priority:
    1. Explicit config_path parameter (--config CLI flag)
    2. APKMETA_CONFIG environment variable
    3. Default locations (/etc/apkmeta/config.yaml, ~/.config/apkmeta/config.yaml, ./apkmeta.yaml)

    Args:
        config_path: Path to config file. If None, tries APKMETA_CONFIG env or default locations.

    Returns:
        GlobalConfig instance (defaults if no file is found in the default locations)

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing
        ValueError: If the config file is invalid
    """
    default_paths = [
        Path("/etc/apkmeta/config.yaml"),
        Path.home() / ".config" / "apkmeta" / "config.yaml",
        Path("apkmeta.yaml"),
    ]

    if config_path:
        paths_to_try = [config_path]
    elif os.environ.get("APKMETA_CONFIG"):
        paths_to_try = [Path(os.environ["APKMETA_CONFIG"])]
    else:
        paths_to_try = default_paths

    for path in paths_to_try:
        if path.exists():
            loader = ConfigLoader(path)
            return loader.load()

    if config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    elif os.environ.get("APKMETA_CONFIG"):
        raise FileNotFoundError(
            f"Configuration file not found: {os.environ['APKMETA_CONFIG']} (from APKMETA_CONFIG)"
        )
    else:
        return GlobalConfig()


def create_example_config(output_path: Path) -> None:
    """Create an example configuration file.

    Args:
        output_path: Path to write example config
    """
    example_config = {
        "container": {
            "max_segment_size": 512 * 1024 * 1024,
            "chunk_size": 64 * 1024,
            "unsupported_entry_policy": "warn",
            "read_files": True,
            "keep_content": False,
        },
        "evaluator": {
            "shell": "/bin/sh",
            "timeout": 5.0,
            "env": {"CARCH": "x86_64", "CBUILD": "x86_64-alpine-linux-musl"},
            "inherit_env": False,
            "path": "/usr/bin:/bin",
        },
    }

    with open(output_path, "w") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
