"""
Dependency constraint parsing.

Shared by the .PKGINFO reader and the APKBUILD field parser. A constraint is
written as ``[!]name[<op><version>][@tag]``, e.g. ``ruby>=3.0``,
``!sample-legacy`` or ``so:libc.musl-x86_64.so.1``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Comparators recognised by apk-tools. "~" is fuzzy match, "><" is checksum match.
COMPARATORS = ("=", ">=", "<=", ">", "<", "~=", "~", "><")

_OP_CHARS = frozenset("<>=~")


class DependencyConstraint(BaseModel):
    """A named requirement (or conflict) with an optional version constraint."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Package, virtual or so:/cmd:/pc: provider name")
    comparator: str | None = Field(None, description="Version comparator (=, >=, <=, >, <, ~=, ~, ><)")
    version: str | None = Field(None, description="Version string, present iff comparator is")
    negated: bool = Field(False, description="Conflict (written as !name)")
    priority: int | None = Field(None, description="provider_priority / replaces_priority")
    repo_pin: str | None = Field(None, description="Repository tag (name@tag)")

    @classmethod
    def parse(cls, text: str, priority: int | None = None) -> DependencyConstraint:
        """Parse a single constraint token.

        Args:
            text: Constraint text, e.g. "ruby>=3.0" or "!foo"
            priority: Priority to attach (provides/replaces only)

        Returns:
            DependencyConstraint

        Raises:
            ValueError: If the token has no name or an invalid comparator/version
        """
        token = text.strip()
        if not token:
            raise ValueError("empty dependency")

        negated = token.startswith("!")
        if negated:
            token = token[1:]

        repo_pin = None
        if "@" in token:
            token, repo_pin = token.split("@", 1)
            if not repo_pin:
                raise ValueError(f"invalid dependency '{text}': empty repository tag")

        comparator = None
        version = None
        start = next((i for i, c in enumerate(token) if c in _OP_CHARS), None)
        if start is not None:
            end = start
            while end < len(token) and token[end] in _OP_CHARS:
                end += 1
            comparator = token[start:end]
            version = token[end:].strip()
            token = token[:start]
            if comparator not in COMPARATORS:
                raise ValueError(f"invalid dependency '{text}': unknown comparator '{comparator}'")
            if not version:
                raise ValueError(f"invalid dependency '{text}': missing version")

        name = token.strip()
        if not name:
            raise ValueError(f"invalid dependency '{text}': missing name")

        return cls(
            name=name,
            comparator=comparator,
            version=version,
            negated=negated,
            priority=priority,
            repo_pin=repo_pin,
        )

    def __str__(self) -> str:
        text = f"!{self.name}" if self.negated else self.name
        if self.comparator:
            text += f"{self.comparator}{self.version}"
        if self.repo_pin:
            text += f"@{self.repo_pin}"
        return text


def parse_dependencies(
    items: list[str],
    *,
    priority: int | None = None,
    on_error=None,
) -> list[DependencyConstraint]:
    """Parse a list of constraint tokens, keeping source order and duplicates.

    Args:
        items: Tokens as split by the shell or by whitespace
        priority: Priority attached to every constraint
        on_error: Callable(item, exc) invoked for unparseable tokens; the token
            is skipped. Without a callback the ValueError propagates.

    Returns:
        List of DependencyConstraint
    """
    result = []
    for item in items:
        try:
            result.append(DependencyConstraint.parse(item, priority=priority))
        except ValueError as e:
            if on_error is None:
                raise
            on_error(item, e)
    return result
