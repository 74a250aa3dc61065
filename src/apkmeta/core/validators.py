"""
Lexical validation of metadata fields.

Only the shape of values is checked (no semantic version ordering, no URL
resolution). A failed check never aborts a read; it is recorded as an
``invalid-field`` warning on the result.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from apkmeta.core.findings import WarningCollector

# Stricter than apk-tools, which allows letters in more places, but compatible
# with what is used in aports.
_PKGVER_PART = r"[0-9]+(?:\.[0-9]+)*[a-z]?[0-9]*(?:_[a-z]+[0-9]*)*"

FILE_NAME = re.compile(r"^[^/\t\n\r ]+$")
NEGATABLE_WORD = re.compile(r"^!?[a-z0-9_-]+$")
ONE_LINE = re.compile(r"^[^\n\r]*$")
PKGNAME = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.+-]*$")
PKGVER = re.compile(rf"^{_PKGVER_PART}$")
PKGVER_MAYBE_REL = re.compile(rf"^{_PKGVER_PART}(?:-r[0-9]+)?$")
PKGVER_REL = re.compile(rf"^{_PKGVER_PART}-r[0-9]+$")
PKGVER_REL_OR_ZERO = re.compile(rf"^(?:{_PKGVER_PART}-r[0-9]+|0)$")
PROVIDER = re.compile(r"^[a-zA-Z0-9_.+\-:/\[\]]+$")
REPO_PIN = re.compile(r"^[^\t\n\r @<>=~]+$")
SHA1 = re.compile(r"^[a-f0-9]{40}$")
SHA256 = re.compile(r"^[a-f0-9]{64}$")
SHA512 = re.compile(r"^[a-f0-9]{128}$")
TRIGGER_PATH = re.compile(r"^(?:/[^/\t\n\r :]+)+/?$")
USER_NAME = re.compile(r"^[a-z_][a-z0-9._-]*\$?$")
WORD = re.compile(r"^[a-z0-9_-]+$")

# Mailbox format, e.g. "Kevin Flynn <kevin.flynn@encom.com>". No IP domains,
# no non-ASCII local part or IDN.
EMAIL = re.compile(
    r"""^
    [^\n\r@<>"]*                            # display-name
    <
    [a-zA-Z0-9.!\#$%&*+/=?^_{|}~-]{1,64}    # local-part
    @
    (?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?\.)+
    [a-zA-Z][a-zA-Z0-9-]*[a-zA-Z]           # TLD
    >
    $""",
    re.VERBOSE,
)

# http(s) only, no userinfo; path, query and fragment are not told apart.
URL = re.compile(
    r"""^
    https?://
    (?:
        \[(?:[a-f0-9]{1,4}::?){1,7}[a-f0-9]{0,4}\]
        |
        [0-9]{1,3}(?:\.[0-9]{1,3}){3}
        |
        (?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+
        [a-z][a-z0-9-]*[a-z]
    )
    (?::[0-9]+)?
    (?:[/?\#][a-z0-9\-._~!$&'()*+,;=:/?\#@%]*)?
    $""",
    re.VERBOSE | re.IGNORECASE | re.ASCII,
)


def source_uri_error(value: str) -> str | None:
    """Return why a source URI is invalid, or None if it is fine."""
    if "://" in value:
        if not URL.fullmatch(value):
            return "is not a valid URL with http or https scheme and without userinfo"
    elif value.startswith("/") or value.startswith("../") or "/../" in value:
        return "is not a relative path with no '../'"
    if any(c.isspace() for c in value):
        return "must not contain whitespaces"
    return None


class FieldValidator:
    """Records ``invalid-field`` warnings for values of the wrong shape."""

    def __init__(self, warnings: WarningCollector):
        self.warnings = warnings

    def invalid(self, field: str, value: str, reason: str) -> None:
        self.warnings.add("invalid-field", f"'{value}' {reason}", context=field)

    def pattern(self, field: str, value: str | None, regex: re.Pattern, what: str) -> bool:
        """Check an optional value against a regex.

        Args:
            field: Field name used as warning context
            value: Value to check (None and "" are not checked)
            regex: Compiled pattern the whole value must match
            what: Description used in the warning ("a valid pkgver")

        Returns:
            True if the value is absent or matches
        """
        if not value:
            return True
        if regex.fullmatch(value):
            return True
        self.invalid(field, value, f"is not {what}")
        return False

    def each(self, field: str, values: Iterable[str], regex: re.Pattern, what: str) -> None:
        for value in values:
            self.pattern(field, value, regex, what)

    def email(self, field: str, value: str | None) -> None:
        self.pattern(
            field, value, EMAIL, "a valid email address in the mailbox format (e.g. Foo <foo@example.org>)"
        )

    def url(self, field: str, value: str | None) -> None:
        self.pattern(field, value, URL, "a valid URL with http or https scheme and without userinfo")

    def source_uri(self, field: str, value: str) -> None:
        reason = source_uri_error(value)
        if reason:
            self.invalid(field, value, reason)
