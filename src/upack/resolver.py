from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

from .downloader import Downloader, build_versions_url
from .errors import InvalidVersionError, NotFoundError, TransportError
from .logger import setup_logger
from .package import Credentials, PackageIdentifier
from .version import UniversalPackageVersion, is_unspecified, parse_partial

_logger = setup_logger()


def resolve_version(
    downloader: Downloader,
    source_url: str,
    identifier: PackageIdentifier,
    version_spec: Optional[str] = None,
    credentials: Optional[Credentials] = None,
    prerelease: bool = False,
) -> UniversalPackageVersion:
    """
    Turn a version spec into one concrete version.

    - "1.2.3" (any full version): returned as-is, the feed is not contacted.
    - None / "" / "latest": newest release on the feed (newest prerelease too if `prerelease`).
    - "1" / "1.2": newest matching version with that numeric prefix.
    """
    prefix: Tuple[int, ...] = ()
    if not is_unspecified(version_spec):
        concrete = UniversalPackageVersion.try_parse(version_spec)
        if concrete is not None:
            return concrete
        partial = parse_partial(version_spec)
        if partial is None:
            raise InvalidVersionError(f"Invalid package version: {version_spec!r}")
        prefix = partial

    available = list_versions(downloader, source_url, identifier, credentials)
    candidates = [
        v for v in available
        if (prerelease or not v.is_prerelease) and v.matches_prefix(prefix)
    ]
    if not candidates:
        wanted = ".".join(str(p) for p in prefix) if prefix else "latest"
        kind = "version" if prerelease else "release version"
        raise NotFoundError(f"No {kind} matching '{wanted}' found for {identifier} on {source_url}")

    latest = max(candidates)
    _logger.debug("Resolved %s %s -> %s", identifier, version_spec or "latest", latest)
    return latest


def list_versions(
    downloader: Downloader,
    source_url: str,
    identifier: PackageIdentifier,
    credentials: Optional[Credentials] = None,
) -> List[UniversalPackageVersion]:
    url = build_versions_url(source_url, identifier)
    payload = downloader.get_json(url, credentials)
    raw = _versions_from_payload(payload, identifier)
    if raw is None:
        raise NotFoundError(f"Package {identifier} not found on {source_url}")

    out: List[UniversalPackageVersion] = []
    for item in raw:
        v = UniversalPackageVersion.try_parse(str(item))
        if v is None:
            _logger.debug("Skipping unparseable feed version %r for %s", item, identifier)
            continue
        out.append(v)
    return out


def _versions_from_payload(payload: Any, identifier: PackageIdentifier) -> Optional[Iterable[Any]]:
    """
    The listing is either one package object or a list of them;
    each object carries a "versions" array.
    """
    if isinstance(payload, dict):
        return _versions_of(payload)
    if isinstance(payload, list):
        for item in payload:
            if not isinstance(item, dict):
                continue
            if item.get("name") != identifier.name:
                continue
            if (item.get("group") or None) != identifier.group:
                continue
            return _versions_of(item)
        return None
    raise TransportError(f"Unexpected version listing payload for {identifier}: {type(payload).__name__}")


def _versions_of(item: dict) -> Optional[Iterable[Any]]:
    versions = item.get("versions")
    if versions is None:
        return None
    if not isinstance(versions, list):
        raise TransportError("Malformed version listing: 'versions' is not a list")
    return versions
