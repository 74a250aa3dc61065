from __future__ import annotations

"""
Security fix history of an APKBUILD.

The history lives in a comment block that is never seen by the shell:

    # secfixes:
    #   1.2.3-r2:
    #     - CVE-2022-12347
    #     - CVE-2022-12346
    #   0:
    #     - CVE-2021-12345  # not affected

The block starts at a "# secfixes:" line before the first function
definition and ends at the first line not starting with "#   ".
"""

import logging
import re

from apkmeta.core import validators
from apkmeta.core.findings import WarningCollector
from apkmeta.plugins.apkbuild.models import SecurityFixRecord

logger = logging.getLogger(__name__)

SECFIXES_MARKER = "# secfixes:"
ENTRY_PREFIX = "#   "

_FUNCTION_DEF = re.compile(r"^\s*(?:function\s+)?[A-Za-z_][A-Za-z0-9_]*\s*\(\s*\)")


def parse_secfixes(text: str, warnings: WarningCollector) -> list[SecurityFixRecord]:
    """Recover the security fix history from the raw APKBUILD text.

    Args:
        text: APKBUILD contents
        warnings: Collector for malformed lines

    Returns:
        SecurityFixRecord list in the order of the comment block
    """
    lines = text.splitlines()
    start = None
    for i, line in enumerate(lines):
        if _FUNCTION_DEF.match(line):
            break
        if line.startswith(SECFIXES_MARKER):
            start = i + 1
            break

    if start is None:
        return []

    records: list[tuple[str, list[str]]] = []
    for lineno, line in enumerate(lines[start:], start=start + 1):
        if not line.startswith(ENTRY_PREFIX):
            break

        body = line[len(ENTRY_PREFIX) :].split(" #", 1)[0].strip()

        if body.startswith("- ") or body == "-":
            advisory = body[1:].strip()
            if not records:
                _malformed(warnings, lineno, line, "advisory before any version")
            elif not advisory:
                _malformed(warnings, lineno, line, "empty advisory")
            else:
                records[-1][1].append(advisory)
        elif body.endswith(":") and len(body) > 1:
            records.append((body[:-1].strip(), []))
        else:
            _malformed(warnings, lineno, line, "expected '<version>:' or '- <id>'")

    check = validators.FieldValidator(warnings)
    for version, _ in records:
        check.pattern("secfixes", version, validators.PKGVER_REL_OR_ZERO, "a valid pkgver-rN or 0")

    logger.debug(f"Parsed {len(records)} secfixes record(s)")
    return [SecurityFixRecord(version=version, advisories=advisories) for version, advisories in records]


def _malformed(warnings: WarningCollector, lineno: int, line: str, reason: str) -> None:
    warnings.add("malformed-secfix", f"{reason}: '{line.strip()}'", context=f"line {lineno}")
