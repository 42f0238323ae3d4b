import functools
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import InvalidVersionError

# Numeric components never carry leading zeros, so a version has one spelling.
_NUMERIC = r"(?:0|[1-9][0-9]*)"
_PRERELEASE_IDENT = r"(?:0|[1-9][0-9]*|[0-9]*[A-Za-z\-][0-9A-Za-z\-]*)"

VERSION_RE = re.compile(
    rf"""
    ^
    (?P<major>{_NUMERIC})
    \.
    (?P<minor>{_NUMERIC})
    \.
    (?P<patch>{_NUMERIC})
    (?:-(?P<prerelease>{_PRERELEASE_IDENT}(?:\.{_PRERELEASE_IDENT})*))?   # optional prerelease
    (?:\+(?P<build>[0-9A-Za-z\-]+(?:\.[0-9A-Za-z\-]+)*))?                 # optional build metadata
    $
    """,
    re.VERBOSE,
)

PARTIAL_RE = re.compile(rf"^{_NUMERIC}(?:\.{_NUMERIC})?$")

LATEST = "latest"


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_prerelease(a: Optional[str], b: Optional[str]) -> int:
    """
    SemVer precedence for prerelease tags.
    A missing tag (a release) sorts above any prerelease of the same triple.
    """
    if a == b:
        return 0
    if not a:
        return 1
    if not b:
        return -1

    pa = a.split(".")
    pb = b.split(".")
    for xa, xb in zip(pa, pb):
        if xa.isdigit() and xb.isdigit():
            c = _cmp(int(xa), int(xb))
        elif xa.isdigit():
            c = -1
        elif xb.isdigit():
            c = 1
        else:
            c = _cmp(xa, xb)
        if c:
            return c

    return _cmp(len(pa), len(pb))


@functools.total_ordering
@dataclass(frozen=True)
class UniversalPackageVersion:
    """
    Semantic version of a universal package: major.minor.patch[-prerelease][+build].

    Usage:
      UniversalPackageVersion.parse("1.2.0-beta.1")
    """

    major: int
    minor: int
    patch: int
    prerelease: Optional[str] = None
    build: Optional[str] = None

    @staticmethod
    def parse(s: str) -> "UniversalPackageVersion":
        """Raises InvalidVersionError if `s` is not a well-formed version."""
        if not isinstance(s, str):
            raise InvalidVersionError("UniversalPackageVersion.parse expects a string")

        m = VERSION_RE.match(s.strip())
        if not m:
            raise InvalidVersionError(f"Invalid package version: {s!r}")
        d = m.groupdict()
        return UniversalPackageVersion(
            major=int(d["major"]),
            minor=int(d["minor"]),
            patch=int(d["patch"]),
            prerelease=d.get("prerelease"),
            build=d.get("build"),
        )

    @staticmethod
    def try_parse(s: str) -> Optional["UniversalPackageVersion"]:
        try:
            return UniversalPackageVersion.parse(s)
        except InvalidVersionError:
            return None

    def __str__(self) -> str:
        out = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            out += f"-{self.prerelease}"
        if self.build:
            out += f"+{self.build}"
        return out

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def _core(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def compare(self, other: "UniversalPackageVersion") -> int:
        c = _cmp(self._core(), other._core())
        if c:
            return c
        c = compare_prerelease(self.prerelease, other.prerelease)
        if c:
            return c
        # Build metadata has no precedence in SemVer; compared last so ordering stays total.
        return _cmp(self.build or "", other.build or "")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UniversalPackageVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __hash__(self) -> int:
        return hash((self._core(), self.prerelease or "", self.build or ""))

    def __lt__(self, other: "UniversalPackageVersion") -> bool:
        if not isinstance(other, UniversalPackageVersion):
            return NotImplemented
        return self.compare(other) < 0

    def matches_prefix(self, prefix: Tuple[int, ...]) -> bool:
        """True when the leading numeric components equal `prefix`, e.g. (1, 2) matches 1.2.x."""
        return self._core()[: len(prefix)] == tuple(prefix)


def is_unspecified(spec: Optional[str]) -> bool:
    return spec is None or not spec.strip() or spec.strip().lower() == LATEST


def parse_partial(spec: str) -> Optional[Tuple[int, ...]]:
    """Returns the numeric prefix of a partial version like "1" or "1.2", else None."""
    spec = spec.strip()
    if not PARTIAL_RE.match(spec):
        return None
    return tuple(int(p) for p in spec.split("."))
