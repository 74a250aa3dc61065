from __future__ import annotations

"""
Parser for the .PKGINFO file of an APKv2 control segment.

.PKGINFO holds one "key = value" pair per line:
- Lines starting with '#' and blank lines are ignored
- Keys may repeat (depend, provides, replaces, ...); values accumulate
- "depend = !name" declares a conflict
- install_if and triggers hold space-separated lists
"""

import logging
from collections.abc import Iterator

from apkmeta.core import validators
from apkmeta.core.dependency import DependencyConstraint, parse_dependencies
from apkmeta.core.findings import WarningCollector
from apkmeta.core.validators import FieldValidator
from apkmeta.plugins.apk.models import PackageInfo

logger = logging.getLogger(__name__)

# .PKGINFO key -> PackageInfo field for single-valued string keys
_SCALAR_KEYS = {
    "pkgname": "name",
    "pkgdesc": "description",
    "url": "url",
    "arch": "arch",
    "license": "license",
    "origin": "origin",
    "maintainer": "maintainer",
    "packager": "packager",
    "commit": "commit",
    "datahash": "data_hash",
}

_INT_KEYS = {
    "builddate": "build_date",
    "size": "installed_size",
    "provider_priority": "provider_priority",
    "replaces_priority": "replaces_priority",
}

_DEPENDENCY_KEYS = {
    "depend": "depends",
    "provides": "provides",
    "replaces": "replaces",
    "install_if": "install_if",
}

# Keys whose value is a whitespace separated list rather than one item
_SPLIT_KEYS = ("install_if", "triggers")


def iter_pairs(text: str, warnings: WarningCollector) -> Iterator[tuple[str, str]]:
    """Yield (key, value) pairs of a .PKGINFO text.

    Lines without " = " are reported as "malformed-pkginfo-line" and skipped.
    """
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or line.startswith("#"):
            continue
        key, sep, value = line.partition(" = ")
        if not sep:
            warnings.add(
                "malformed-pkginfo-line",
                f"missing ' = ' in '{line}'",
                context=f".PKGINFO line {lineno}",
            )
            continue
        yield key.strip(), value.strip()


def split_version(pkgver: str) -> tuple[str, int | None]:
    """Split "1.2.3-r2" into ("1.2.3", 2).

    A version without a numeric -rN suffix is returned unchanged with
    release None.
    """
    version, sep, release = pkgver.rpartition("-r")
    if sep and version and release.isdigit():
        return version, int(release)
    return pkgver, None


def parse_pkginfo(text: str, warnings: WarningCollector) -> PackageInfo:
    """Parse .PKGINFO contents.

    Args:
        text: File contents
        warnings: Collector for malformed lines and invalid values

    Returns:
        PackageInfo (missing keys leave fields at their defaults)
    """
    fields: dict = {}
    raw_dependencies: dict[str, list[str]] = {name: [] for name in _DEPENDENCY_KEYS.values()}
    triggers: list[str] = []
    extra: dict[str, list[str]] = {}

    for key, value in iter_pairs(text, warnings):
        if key == "pkgver":
            fields["full_version"] = value
            fields["version"], fields["release"] = split_version(value)
        elif key in _SCALAR_KEYS:
            fields[_SCALAR_KEYS[key]] = value
        elif key in _INT_KEYS:
            try:
                fields[_INT_KEYS[key]] = int(value)
            except ValueError:
                warnings.add("invalid-field", f"'{value}' is not an integer", context=key)
        elif key in _DEPENDENCY_KEYS:
            items = value.split() if key in _SPLIT_KEYS else [value]
            raw_dependencies[_DEPENDENCY_KEYS[key]].extend(items)
        elif key == "triggers":
            triggers.extend(value.split())
        else:
            extra.setdefault(key, []).append(value)

    def invalid_dependency(item: str, e: ValueError) -> None:
        warnings.add("invalid-dependency", str(e), context=item)

    dependencies = {
        name: parse_dependencies(items, on_error=invalid_dependency)
        for name, items in raw_dependencies.items()
    }
    dependencies["provides"] = _with_priority(dependencies["provides"], fields.get("provider_priority"))
    dependencies["replaces"] = _with_priority(dependencies["replaces"], fields.get("replaces_priority"))

    info = PackageInfo(**fields, **dependencies, triggers=triggers, extra=extra)
    _validate(info, warnings)

    logger.debug(
        f"Parsed .PKGINFO of {info.name or '?'}-{info.full_version or '?'}: "
        f"{len(info.depends)} depends, {len(info.provides)} provides, {len(extra)} extra keys"
    )
    return info


def _with_priority(
    constraints: list[DependencyConstraint], priority: int | None
) -> list[DependencyConstraint]:
    if priority is None:
        return constraints
    return [c.model_copy(update={"priority": priority}) for c in constraints]


def _validate(info: PackageInfo, warnings: WarningCollector) -> None:
    check = FieldValidator(warnings)
    check.pattern("pkgname", info.name, validators.PKGNAME, "a valid package name")
    check.pattern("pkgver", info.full_version, validators.PKGVER_REL, "a valid pkgver with -rN suffix")
    check.pattern("pkgdesc", info.description, validators.ONE_LINE, "a single line")
    check.url("url", info.url)
    check.pattern("arch", info.arch, validators.WORD, "a valid architecture")
    check.pattern("origin", info.origin, validators.PKGNAME, "a valid package name")
    check.pattern("commit", info.commit, validators.SHA1, "a SHA-1 hex digest")
    check.pattern("datahash", info.data_hash, validators.SHA256, "a SHA-256 hex digest")
    check.email("maintainer", info.maintainer)
    check.each("triggers", info.triggers, validators.TRIGGER_PATH, "an absolute directory path")
