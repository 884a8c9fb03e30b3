"""Semantic version parsing and precedence.

Accepts ``MAJOR[.MINOR[.PATCH[-PRERELEASE][+BUILD]]]`` with an optional
leading ``v``. Shorthand ``1`` and ``1.2`` mean ``1.0.0`` and ``1.2.0`` and
cannot carry a prerelease or build suffix. Numeric parts have no leading
zeros. Build metadata is ignored for precedence and dropped by
``normalize()``.

Examples:
    >>> normalize("v1.2")
    '1.2.0'
    >>> compare("1.0.0-rc.1", "1.0.0")
    -1
    >>> is_valid("01.0.0")
    False
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

_SEMVER = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*)"
    r"(?:\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r")?)?$",
    re.ASCII,
)


@total_ordering
@dataclass(frozen=True)
class Version:
    """A parsed semantic version; ordering follows semver precedence."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        return text

    def _key(self) -> tuple:
        # a release sorts after all of its prereleases
        identifiers = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in self.prerelease
        )
        return (self.major, self.minor, self.patch, not self.prerelease, identifiers)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()


def parse(text: str) -> Version | None:
    """Parse ``text``; None when it is not a valid semantic version."""
    if text[:1] in ("v", "V"):
        text = text[1:]
    match = _SEMVER.match(text)
    if match is None:
        return None

    prerelease = match.group("prerelease")
    parts = tuple(prerelease.split(".")) if prerelease else ()
    for part in parts:
        if part.isdigit() and len(part) > 1 and part.startswith("0"):
            return None

    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor") or 0),
        patch=int(match.group("patch") or 0),
        prerelease=parts,
    )


def is_valid(text: str) -> bool:
    return parse(text) is not None


def normalize(text: str) -> str:
    """Canonical ``major.minor.patch[-prerelease]`` form.

    Raises:
        ValueError: if ``text`` is not a semantic version
    """
    version = parse(text)
    if version is None:
        raise ValueError(f"invalid semantic version: {text!r}")
    return str(version)


def compare(a: str | None, b: str | None) -> int:
    """Compare two version strings: -1, 0 or 1.

    Invalid or missing versions sort before every valid one and compare
    equal to each other.
    """
    va = parse(a) if a else None
    vb = parse(b) if b else None
    if va is None or vb is None:
        return (va is not None) - (vb is not None)
    return (va > vb) - (va < vb)


__all__ = [
    "Version",
    "parse",
    "is_valid",
    "normalize",
    "compare",
]
