"""Version constraints as closed/open intervals.

Constraint grammar (comma or whitespace separated terms are intersected)::

    ""  "*"  "latest"          any version
    1.2.3  v1.2.3  =1.2.3     exactly that version
    >=1.2  >1.2  <=2  <2.0.0   comparison bounds
    ^1.2.3                     compatible: >=1.2.3 <2.0.0 (>=0.2.3 <0.3.0 for 0.x)
    ~1.2.3                     patch-level: >=1.2.3 <1.3.0

Missing minor/patch components default to zero. A pre-release suffix
(``1.2.0-rc1``) sorts before the release it precedes; build metadata
(``+build5``) is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering


_VERSION_RE = re.compile(
    r"^v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
_TERM_RE = re.compile(r"^(?P<op>>=|<=|==|>|<|=|\^|~)?\s*(?P<version>\S+)$")
_ANY = {"", "*", "latest", "any"}


def _pre_release_key(pre: str) -> tuple:
    """Semver ordering: numeric identifiers compare as ints and sort before text."""
    if not pre:
        return ()
    return tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre.split("."))


@total_ordering
@dataclass(frozen=True)
class Version:
    major: int
    minor: int = 0
    patch: int = 0
    pre: str = ""

    @classmethod
    def parse(cls, text: str) -> "Version":
        match = _VERSION_RE.match(text.strip())
        if match is None:
            raise ValueError(f"Invalid version: {text!r}")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            pre=match.group("pre") or "",
        )

    def _key(self) -> tuple:
        # A release sorts after any of its pre-releases.
        return (self.major, self.minor, self.patch, self.pre == "", _pre_release_key(self.pre))

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        return f"{text}-{self.pre}" if self.pre else text


@dataclass(frozen=True)
class VersionRange:
    """An interval of versions; ``None`` bounds are unbounded."""

    lower: Version | None = None
    lower_inclusive: bool = True
    upper: Version | None = None
    upper_inclusive: bool = False

    @property
    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower < self.upper:
            return False
        if self.lower == self.upper:
            return not (self.lower_inclusive and self.upper_inclusive)
        return True

    def contains_version(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower or (version == self.lower and not self.lower_inclusive):
                return False
        if self.upper is not None:
            if version > self.upper or (version == self.upper and not self.upper_inclusive):
                return False
        return True

    def intersect(self, other: "VersionRange") -> "VersionRange":
        lower, lower_inc = _tighter_lower(
            (self.lower, self.lower_inclusive), (other.lower, other.lower_inclusive)
        )
        upper, upper_inc = _tighter_upper(
            (self.upper, self.upper_inclusive), (other.upper, other.upper_inclusive)
        )
        return VersionRange(lower, lower_inc, upper, upper_inc)

    def contains(self, other: "VersionRange") -> bool:
        """True when every version in *other* is also in this range."""
        if other.is_empty:
            return True
        return self.intersect(other) == other.intersect(other)

    def __str__(self) -> str:
        if self.lower is not None and self.lower == self.upper:
            return f"={self.lower}"
        parts = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower_inclusive else '>'}{self.lower}")
        if self.upper is not None:
            parts.append(f"{'<=' if self.upper_inclusive else '<'}{self.upper}")
        return ",".join(parts) or "*"


ANY_VERSION = VersionRange()


def parse_constraint(text: str | None) -> VersionRange:
    """Parse a constraint string into a :class:`VersionRange`.

    Raises:
        ValueError: If a term is malformed or the terms cannot all hold.
    """
    if text is None or text.strip().lower() in _ANY:
        return ANY_VERSION

    result = ANY_VERSION
    for term in _split_terms(text):
        result = result.intersect(_parse_term(term))
    if result.is_empty:
        raise ValueError(f"Constraint {text!r} cannot be satisfied by any version")
    return result


def _split_terms(text: str) -> list[str]:
    # Join operators separated from their version by whitespace (">= 1.2").
    compact = re.sub(r"(>=|<=|==|>|<|=|\^|~)\s+", r"\1", text.strip())
    return [term for term in re.split(r"[,\s]+", compact) if term]


def _parse_term(term: str) -> VersionRange:
    match = _TERM_RE.match(term)
    if match is None:
        raise ValueError(f"Invalid constraint term: {term!r}")
    op = match.group("op") or "="
    raw = match.group("version")
    if raw.lower() in _ANY:
        return ANY_VERSION
    version = Version.parse(raw)
    given = _component_count(raw)

    if op in ("=", "=="):
        return VersionRange(version, True, version, True)
    if op == ">=":
        return VersionRange(lower=version, lower_inclusive=True)
    if op == ">":
        return VersionRange(lower=version, lower_inclusive=False)
    if op == "<=":
        return VersionRange(upper=version, upper_inclusive=True)
    if op == "<":
        return VersionRange(upper=version, upper_inclusive=False)
    if op == "^":
        if version.major > 0 or given == 1:
            upper = Version(version.major + 1)
        elif version.minor > 0 or given == 2:
            upper = Version(0, version.minor + 1)
        else:
            upper = Version(0, 0, version.patch + 1)
        return VersionRange(version, True, upper, False)
    if op == "~":
        if given == 1:
            upper = Version(version.major + 1)
        else:
            upper = Version(version.major, version.minor + 1)
        return VersionRange(version, True, upper, False)
    raise ValueError(f"Unsupported operator {op!r} in {term!r}")


def _component_count(raw: str) -> int:
    core = raw.lstrip("v").split("-", 1)[0].split("+", 1)[0]
    return len(core.split("."))


def _tighter_lower(
    a: tuple[Version | None, bool], b: tuple[Version | None, bool]
) -> tuple[Version | None, bool]:
    if a[0] is None:
        return b
    if b[0] is None:
        return a
    if a[0] > b[0]:
        return a
    if b[0] > a[0]:
        return b
    return a[0], a[1] and b[1]


def _tighter_upper(
    a: tuple[Version | None, bool], b: tuple[Version | None, bool]
) -> tuple[Version | None, bool]:
    if a[0] is None:
        return b
    if b[0] is None:
        return a
    if a[0] < b[0]:
        return a
    if b[0] < a[0]:
        return b
    return a[0], a[1] and b[1]
