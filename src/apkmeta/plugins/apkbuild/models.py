"""
APKBUILD metadata models.

This module contains Pydantic models for the metadata recovered from an
evaluated APKBUILD.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from apkmeta.core.checksums import SourceEntry
from apkmeta.core.dependency import DependencyConstraint
from apkmeta.core.findings import ValidationWarning


class Trigger(BaseModel):
    """A trigger script and the directories it monitors."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Trigger script file name")
    pattern: str = Field(..., description="Colon separated directory globs")


class SecurityFixRecord(BaseModel):
    """Advisories fixed in (or not affecting, for "0") a package version."""

    model_config = ConfigDict(frozen=True)

    version: str = Field(..., description="pkgver-rN, or 0 for not affected")
    advisories: list[str] = Field(default_factory=list, description="CVE or other advisory IDs")


class BuildDescriptorMetadata(BaseModel):
    """Metadata of an APKBUILD.

    ``variables`` holds the raw evaluated text of every emitted variable
    (lists joined by a single space), including ones without a typed field.
    """

    model_config = ConfigDict(frozen=True)

    maintainer: str | None = Field(None, description="From the '# Maintainer:' comment")
    contributors: list[str] = Field(default_factory=list, description="From '# Contributor:' comments")
    name: str = Field("", description="pkgname")
    version: str = Field("", description="pkgver")
    release: int | None = Field(None, description="pkgrel")
    description: str | None = Field(None, description="pkgdesc")
    url: str | None = None
    arch: list[str] = Field(default_factory=list, description="Expanded architectures")
    license: str | None = None
    depends: list[DependencyConstraint] = Field(default_factory=list)
    makedepends: list[DependencyConstraint] = Field(default_factory=list)
    makedepends_build: list[DependencyConstraint] = Field(default_factory=list)
    makedepends_host: list[DependencyConstraint] = Field(default_factory=list)
    checkdepends: list[DependencyConstraint] = Field(default_factory=list)
    install_if: list[DependencyConstraint] = Field(default_factory=list)
    provides: list[DependencyConstraint] = Field(default_factory=list)
    provider_priority: int | None = None
    replaces: list[DependencyConstraint] = Field(default_factory=list)
    replaces_priority: int | None = None
    pcprefix: str | None = None
    sonameprefix: str | None = None
    pkgusers: list[str] = Field(default_factory=list)
    pkggroups: list[str] = Field(default_factory=list)
    install: list[str] = Field(default_factory=list, description="Install script file names")
    triggers: list[Trigger] = Field(default_factory=list)
    subpackages: list[str] = Field(default_factory=list, description="Subpackage names")
    sources: list[SourceEntry] = Field(default_factory=list)
    options: list[str] = Field(default_factory=list)
    secfixes: list[SecurityFixRecord] = Field(default_factory=list)
    variables: dict[str, str] = Field(default_factory=dict)
    warnings: list[ValidationWarning] = Field(default_factory=list)

    @property
    def full_version(self) -> str:
        """pkgver-rN as used in package file names and secfixes."""
        return f"{self.version}-r{self.release if self.release is not None else 0}"
