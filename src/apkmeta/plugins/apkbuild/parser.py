from __future__ import annotations

"""
Parser for evaluated APKBUILD variables.

Turns the NUL-framed records written by the evaluation wrapper into a typed
BuildDescriptorMetadata. Fields that only exist as comments (maintainer,
contributors, secfixes) are read from the raw APKBUILD text instead.
"""

import logging
from typing import Optional, Union

from apkmeta.core import validators
from apkmeta.core.checksums import ChecksumAlgorithm, pair_sources, parse_checksum_lines
from apkmeta.core.config import ARCH_ALL
from apkmeta.core.dependency import DependencyConstraint, parse_dependencies
from apkmeta.core.errors import EvaluationFailed
from apkmeta.core.findings import WarningCollector
from apkmeta.core.validators import FieldValidator
from apkmeta.plugins.apkbuild.models import BuildDescriptorMetadata, Trigger
from apkmeta.plugins.apkbuild.secfixes import parse_secfixes

logger = logging.getLogger(__name__)

# Scalar (str), list or array (list[str]), unset (None)
FieldValue = Optional[Union[str, list[str]]]

# Dependency fields of an APKBUILD, in BuildDescriptorMetadata order
DEPENDENCY_FIELDS = [
    "depends",
    "makedepends",
    "makedepends_build",
    "makedepends_host",
    "checkdepends",
    "install_if",
]

_SCALAR_FIELDS = {
    "pkgdesc": "description",
    "url": "url",
    "license": "license",
    "pcprefix": "pcprefix",
    "sonameprefix": "sonameprefix",
}

_INT_FIELDS = {
    "pkgrel": "release",
    "provider_priority": "provider_priority",
    "replaces_priority": "replaces_priority",
}

# Comment attributes are only looked for in the first lines of the file
CONTRIBUTOR_LINES = 10


def decode_records(raw: bytes) -> dict[str, FieldValue]:
    """Un-frame the output of the evaluation wrapper.

    Args:
        raw: Wrapper stdout

    Returns:
        Mapping of variable name to value, in output order

    Raises:
        EvaluationFailed: If the output is not a complete record stream
    """
    if not raw.endswith(b"\0"):
        raise EvaluationFailed("evaluation output is not NUL terminated")

    tokens = [part.decode("utf-8", errors="replace") for part in raw[:-1].split(b"\0")]
    records: dict[str, FieldValue] = {}
    i = 0

    try:
        while True:
            tag = tokens[i]
            if tag == "E":
                i += 1
                break
            elif tag == "S":
                records[tokens[i + 1]] = tokens[i + 2]
                i += 3
            elif tag in ("L", "A"):
                name, count = tokens[i + 1], int(tokens[i + 2])
                values = tokens[i + 3 : i + 3 + count]
                if count < 0 or len(values) != count:
                    raise EvaluationFailed(f"truncated list record for '{name}'")
                records[name] = values
                i += 3 + count
            elif tag == "U":
                records[tokens[i + 1]] = None
                i += 2
            else:
                raise EvaluationFailed(f"unknown record tag {tag!r} in evaluation output")
    except IndexError:
        raise EvaluationFailed("evaluation output ends without end marker") from None
    except ValueError as e:
        raise EvaluationFailed(f"malformed record in evaluation output: {e}") from e

    if i != len(tokens):
        raise EvaluationFailed("unexpected data after end marker in evaluation output")

    return records


def parse_comment_attribute(name: str, line: str) -> str | None:
    """Return the value of a "# <name> <value>" comment line, or None."""
    line = line.strip()
    if not line.startswith("# "):
        return None
    rest = line[2:].lstrip()
    if not rest.startswith(name):
        return None
    value = rest[len(name) :].strip()
    return value or None


def parse_maintainer(text: str) -> str | None:
    """Find the "# Maintainer:" comment anywhere in the APKBUILD."""
    for line in text.splitlines():
        value = parse_comment_attribute("Maintainer:", line)
        if value:
            return value
    return None


def parse_contributors(text: str) -> list[str]:
    """Collect "# Contributor:" comments from the head of the APKBUILD."""
    contributors = []
    for line in text.splitlines()[:CONTRIBUTOR_LINES]:
        value = parse_comment_attribute("Contributor:", line)
        if value:
            contributors.append(value)
    return contributors


def expand_arch(items: list[str], arch_all: list[str]) -> list[str]:
    """Expand "all"/"noarch", apply "!arch" exclusions, sort and dedupe.

    >>> expand_arch(["all", "!riscv64"], ["x86_64", "riscv64"])
    ['x86_64']
    """
    arches: list[str] = []
    for token in items:
        if token in ("all", "noarch"):
            arches.extend(arch_all)
        elif token.startswith("!"):
            arches = [arch for arch in arches if arch != token[1:]]
        else:
            arches.append(token)
    return sorted(set(arches))


def parse_triggers(items: list[str], warnings: WarningCollector) -> list[Trigger]:
    """Split "name=pattern" trigger items."""
    triggers = []
    for item in items:
        name, sep, pattern = item.partition("=")
        if not sep or not name or not pattern:
            warnings.add("malformed-trigger", f"expected '<script>=<paths>' in '{item}'", context="triggers")
            continue
        triggers.append(Trigger(name=name, pattern=pattern))
    return triggers


def parse_descriptor(
    records: dict[str, FieldValue],
    raw_text: str,
    *,
    arch_all: Optional[list[str]] = None,
    warnings: Optional[WarningCollector] = None,
) -> BuildDescriptorMetadata:
    """Build typed metadata from decoded records and the raw APKBUILD text.

    Args:
        records: Output of decode_records
        raw_text: APKBUILD contents (for comments and secfixes)
        arch_all: Architectures "all"/"noarch" expand to (default ARCH_ALL)
        warnings: Collector for soft findings (a new one if None)

    Returns:
        BuildDescriptorMetadata
    """
    warnings = warnings if warnings is not None else WarningCollector(logger)
    arch_all = ARCH_ALL if arch_all is None else arch_all

    def scalar(name: str) -> str | None:
        value = records.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def words(name: str) -> list[str]:
        value = records.get(name)
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return list(value)

    def invalid_dependency(field: str):
        def report(item: str, e: ValueError) -> None:
            warnings.add("invalid-dependency", str(e), context=field)

        return report

    fields: dict = {
        "name": scalar("pkgname") or "",
        "version": scalar("pkgver") or "",
    }
    for var, field in _SCALAR_FIELDS.items():
        fields[field] = scalar(var) or None

    for var, field in _INT_FIELDS.items():
        value = scalar(var)
        if not value:
            continue
        try:
            fields[field] = int(value)
        except ValueError:
            warnings.add("invalid-field", f"'{value}' is not an integer", context=var)

    for name in DEPENDENCY_FIELDS:
        fields[name] = parse_dependencies(words(name), on_error=invalid_dependency(name))
    fields["provides"] = parse_dependencies(
        words("provides"),
        priority=fields.get("provider_priority"),
        on_error=invalid_dependency("provides"),
    )
    fields["replaces"] = parse_dependencies(
        words("replaces"),
        priority=fields.get("replaces_priority"),
        on_error=invalid_dependency("replaces"),
    )

    fields["arch"] = expand_arch(words("arch"), arch_all)
    fields["pkgusers"] = words("pkgusers")
    fields["pkggroups"] = words("pkggroups")
    fields["install"] = words("install")
    fields["options"] = words("options")
    fields["subpackages"] = [item.split(":", 1)[0] for item in words("subpackages")]
    fields["triggers"] = parse_triggers(words("triggers"), warnings)

    algorithm: ChecksumAlgorithm | None = None
    checksum_text = ""
    if records.get("sha512sums") is not None:
        algorithm, checksum_text = "sha512", scalar("sha512sums")
    elif records.get("sha256sums") is not None:
        algorithm, checksum_text = "sha256", scalar("sha256sums")
    fields["sources"] = pair_sources(
        words("source"), parse_checksum_lines(checksum_text or ""), algorithm, warnings
    )

    fields["maintainer"] = parse_maintainer(raw_text)
    fields["contributors"] = parse_contributors(raw_text)
    fields["secfixes"] = parse_secfixes(raw_text, warnings)

    fields["variables"] = {name: scalar(name) for name, value in records.items() if value is not None}

    _validate(fields, warnings)

    return BuildDescriptorMetadata(**fields, warnings=list(warnings))


def _validate(fields: dict, warnings: WarningCollector) -> None:
    check = FieldValidator(warnings)
    check.pattern("pkgname", fields["name"], validators.PKGNAME, "a valid package name")
    check.pattern("pkgver", fields["version"], validators.PKGVER, "a valid pkgver")
    check.pattern("pkgdesc", fields["description"], validators.ONE_LINE, "a single line")
    check.url("url", fields["url"])
    check.email("maintainer", fields["maintainer"])
    for contributor in fields["contributors"]:
        check.email("contributors", contributor)
    check.each("arch", fields["arch"], validators.WORD, "a valid architecture")
    check.each("subpackages", fields["subpackages"], validators.PKGNAME, "a valid package name")
    check.each("install", fields["install"], validators.FILE_NAME, "a file name")
    check.each("options", fields["options"], validators.NEGATABLE_WORD, "a valid option")
    check.each("pkgusers", fields["pkgusers"], validators.USER_NAME, "a valid user name")
    check.each("pkggroups", fields["pkggroups"], validators.USER_NAME, "a valid group name")

    for name in [*DEPENDENCY_FIELDS, "provides", "replaces"]:
        constraints: list[DependencyConstraint] = fields[name]
        for constraint in constraints:
            check.pattern(name, constraint.name, validators.PROVIDER, "a valid package or provider name")
            check.pattern(name, constraint.version, validators.PKGVER_MAYBE_REL, "a valid version")
            check.pattern(name, constraint.repo_pin, validators.REPO_PIN, "a valid repository tag")

    for trigger in fields["triggers"]:
        for path in trigger.pattern.split(":"):
            check.pattern("triggers", path, validators.TRIGGER_PATH, "an absolute directory path")

    digest_patterns = {"sha512": validators.SHA512, "sha256": validators.SHA256}
    for source in fields["sources"]:
        check.pattern("source", source.name, validators.FILE_NAME, "a file name")
        check.source_uri("source", source.uri)
        if source.checksum and source.checksum_algorithm:
            check.pattern(
                f"{source.checksum_algorithm}sums",
                source.checksum,
                digest_patterns[source.checksum_algorithm],
                f"a {source.checksum_algorithm.upper()} hex digest",
            )
