from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .version import UniversalPackageVersion


class RegistryScope(Enum):
    USER = "user"
    MACHINE = "machine"


@dataclass(frozen=True)
class PackageIdentifier:
    """Package group and name, e.g. ``PackageIdentifier.parse("tools/build:msbuild")``."""

    name: str
    group: Optional[str] = None

    @staticmethod
    def parse(s: str) -> "PackageIdentifier":
        if not isinstance(s, str):
            raise ValueError("PackageIdentifier.parse expects a string")
        if ":" in s:
            group, name = s.split(":", 1)
        else:
            group, name = None, s
        if not name:
            raise ValueError(f"Package name is required: {s!r}")
        return PackageIdentifier(name=name, group=group or None)

    def __str__(self) -> str:
        return f"{self.group}:{self.name}" if self.group else self.name


@dataclass(frozen=True)
class Credentials:
    user: str
    password: str

    def as_auth(self):
        return (self.user, self.password)

    def __repr__(self) -> str:
        return f"Credentials(user={self.user!r}, password='***')"


@dataclass(frozen=True)
class CacheKey:
    group: Optional[str]
    name: str
    version: UniversalPackageVersion

    @staticmethod
    def of(identifier: PackageIdentifier, version: UniversalPackageVersion) -> "CacheKey":
        return CacheKey(group=identifier.group, name=identifier.name, version=version)

    @property
    def identifier(self) -> PackageIdentifier:
        return PackageIdentifier(name=self.name, group=self.group)

    def __str__(self) -> str:
        return f"{self.identifier} {self.version}"


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    artifact_path: Path
    installed_by: str
    installed_at: str
    scope: RegistryScope
    sha256: str
    size: int
    comment: Optional[str] = None
    feed_url: Optional[str] = None
    installed_using: Optional[str] = None

    @staticmethod
    def from_row(row: Dict[str, Any], scope: RegistryScope) -> "CacheEntry":
        """Construct from a registry index row (mapping or sqlite3.Row)."""
        return CacheEntry(
            key=CacheKey(
                group=row["group_name"] or None,
                name=row["name"],
                version=UniversalPackageVersion.parse(row["version"]),
            ),
            artifact_path=Path(row["artifact_path"]),
            installed_by=row["installed_by"],
            installed_at=row["installed_at"],
            scope=scope,
            sha256=row["sha256"],
            size=int(row["size"]),
            comment=row["comment"],
            feed_url=row["feed_url"],
            installed_using=row["installed_using"],
        )


@dataclass(frozen=True)
class InstallRequest:
    identifier: PackageIdentifier
    source_url: str
    target_directory: Path
    version_spec: Optional[str] = None
    credentials: Optional[Credentials] = None
    overwrite: bool = False
    prerelease: bool = False
    comment: Optional[str] = None
    scope: RegistryScope = RegistryScope.MACHINE
    skip_registry: bool = False
