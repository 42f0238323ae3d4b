from __future__ import annotations

import getpass
import hashlib
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Tuple, Union

from . import __version__
from .config import Config
from .downloader import CHUNK_SIZE, Downloader
from .errors import StorageError
from .locking import KeyLock
from .logger import setup_logger
from .package import CacheEntry, CacheKey, Credentials, PackageIdentifier, RegistryScope
from .registry_index import RegistryIndex
from .version import UniversalPackageVersion

_logger = setup_logger()

INSTALLED_USING = f"upack/{__version__}"


def _safe_name(raw: str) -> str:
    return "".join(ch if ch.isalnum() or ch in ("-", "_", ".", "+", "$") else "_" for ch in raw)


def _key_digest(*parts: str) -> str:
    return hashlib.sha256("\0".join(parts).encode("utf-8")).hexdigest()


def _stream_sha256(fh: IO[bytes]) -> str:
    digest = hashlib.sha256()
    for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()


def current_user() -> str:
    # getuser() fails without USER/LOGNAME and without a passwd entry (e.g. in containers).
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _copy_hashing(src: IO[bytes], dst: IO[bytes]) -> Tuple[str, int]:
    digest = hashlib.sha256()
    size = 0
    for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
        digest.update(chunk)
        dst.write(chunk)
        size += len(chunk)
    return digest.hexdigest(), size


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Registry:
    """
    Local package registry of one scope: a shared cache of downloaded package
    artifacts plus an index of who installed them and why.

    Layout under ``root``:
      registry.sqlite                            metadata index
      packageCache/<group$name>-<id>/<key>.upack  admitted artifacts
      packageCache/<group$name>-<id>/<key>.lock   per-key admission lock
      packageCache/<group$name>-<id>/.<key>.upack.*.partial  staging files

    ``<id>`` is derived from the exact group and name, ``<key>`` is the sha256
    of group, name and version, so distinct keys never share a file even when
    their readable names collapse to the same text or differ only in case.

    An artifact becomes visible only through an index row, and the row is
    written after the artifact is renamed into place. Admission of one key is
    serialized across threads and processes by its lock file; reading an
    admitted artifact takes no lock, and its recorded size and digest are
    checked on the very handle that is returned.
    """

    def __init__(
        self,
        root: Union[str, Path],
        scope: RegistryScope,
        downloader: Downloader,
        lock_timeout: float = 300.0,
        verify_cache: bool = True,
    ) -> None:
        self.root = Path(root)
        self.scope = scope
        self.downloader = downloader
        self.lock_timeout = lock_timeout
        self.verify_cache = verify_cache
        self.cache_dir = self.root / "packageCache"
        self.index = RegistryIndex(self.root / "registry.sqlite")

    @classmethod
    def for_scope(cls, scope: RegistryScope, config: Config, downloader: Downloader) -> "Registry":
        root = config.user_registry if scope is RegistryScope.USER else config.machine_registry
        return cls(
            root,
            scope,
            downloader,
            lock_timeout=config.lock_timeout,
            verify_cache=config.verify_cache,
        )

    def close(self) -> None:
        self.index.close()

    # -------------------------
    # Paths
    # -------------------------
    def package_dir(self, key: CacheKey) -> Path:
        label = f"{key.group.replace('/', '$')}${key.name}" if key.group else key.name
        return self.cache_dir / f"{_safe_name(label)[:48]}-{_key_digest(key.group or '', key.name)[:16]}"

    def artifact_path(self, key: CacheKey) -> Path:
        return self.package_dir(key) / f"{_key_digest(key.group or '', key.name, str(key.version))}.upack"

    def lock_path(self, key: CacheKey) -> Path:
        return self.package_dir(key) / f"{_key_digest(key.group or '', key.name, str(key.version))}.lock"

    # -------------------------
    # Lookups
    # -------------------------
    def get_entry(self, identifier: PackageIdentifier, version: UniversalPackageVersion) -> Optional[CacheEntry]:
        """Return the index entry for a package version, or None. The artifact is not checked."""
        row = self.index.get_entry(CacheKey.of(identifier, version))
        return CacheEntry.from_row(row, self.scope) if row else None

    def list_entries(self) -> List[CacheEntry]:
        return [CacheEntry.from_row(row, self.scope) for row in self.index.list_entries()]

    def is_cached(self, identifier: PackageIdentifier, version: UniversalPackageVersion) -> bool:
        stream = self._open_cached(CacheKey.of(identifier, version))
        if stream is None:
            return False
        stream.close()
        return True

    def _open_cached(self, key: CacheKey) -> Optional[IO[bytes]]:
        """Open the admitted artifact of `key`, or None if it has no row or the file no longer matches it."""
        row = self.index.get_entry(key)
        if not row:
            return None
        stream = self._open_intact(CacheEntry.from_row(row, self.scope))
        if stream is None:
            _logger.warning("Cached artifact for %s is missing or damaged; it will be downloaded again.", key)
        return stream

    def _open_intact(self, entry: CacheEntry) -> Optional[IO[bytes]]:
        try:
            fh = open(entry.artifact_path, "rb")
        except OSError as e:
            _logger.debug("Cannot open %s: %s", entry.artifact_path, e)
            return None

        try:
            intact = os.fstat(fh.fileno()).st_size == entry.size
            if intact and self.verify_cache:
                intact = _stream_sha256(fh) == entry.sha256
                fh.seek(0)
        except OSError as e:
            _logger.debug("Cannot verify %s: %s", entry.artifact_path, e)
            intact = False

        if not intact:
            fh.close()
            return None
        return fh

    # -------------------------
    # Get or download
    # -------------------------
    def get_or_download_package(
        self,
        identifier: PackageIdentifier,
        version: UniversalPackageVersion,
        source_url: str,
        credentials: Optional[Credentials] = None,
        comment: Optional[str] = None,
        installed_by: Optional[str] = None,
    ) -> IO[bytes]:
        """
        Return an open binary stream over the cached artifact of `identifier` `version`,
        downloading and admitting it first if it is not cached in this scope.
        """
        key = CacheKey.of(identifier, version)
        installed_by = installed_by or current_user()

        stream = self._open_cached(key)
        if stream is None:
            with KeyLock(self.lock_path(key), timeout=self.lock_timeout):
                # Another holder may have admitted it while we waited.
                stream = self._open_cached(key)
                if stream is None:
                    entry = self._admit(key, source_url, credentials, comment, installed_by)
                    return self._open(entry)

        _logger.info("Using cached %s from the %s registry.", key, self.scope.value)
        try:
            self.index.update_metadata(
                key,
                comment=comment,
                installed_at=_now(),
                installed_by=installed_by,
                installed_using=INSTALLED_USING,
                feed_url=source_url,
            )
        except BaseException:
            stream.close()
            raise
        return stream

    def _open(self, entry: CacheEntry) -> IO[bytes]:
        try:
            return open(entry.artifact_path, "rb")
        except OSError as e:
            raise StorageError(f"Failed to open cached artifact {entry.artifact_path}: {e}") from e

    def _admit(
        self,
        key: CacheKey,
        source_url: str,
        credentials: Optional[Credentials],
        comment: Optional[str],
        installed_by: str,
    ) -> CacheEntry:
        """Download and commit: stage, fsync, rename into place, then write the index row. Caller holds the key lock."""
        final = self.artifact_path(key)
        self._discard_partials(key)

        with self.downloader.open_package(source_url, key.identifier, key.version, credentials) as src:
            staged: Optional[Path] = None
            renamed = False
            try:
                final.parent.mkdir(parents=True, exist_ok=True)
                fd, staged_name = tempfile.mkstemp(prefix=f".{final.name}.", suffix=".partial", dir=final.parent)
                staged = Path(staged_name)
                with os.fdopen(fd, "wb") as out:
                    sha256, size = _copy_hashing(src, out)
                    out.flush()
                    os.fsync(out.fileno())

                os.replace(staged, final)
                renamed = True

                entry = CacheEntry(
                    key=key,
                    artifact_path=final,
                    installed_by=installed_by,
                    installed_at=_now(),
                    scope=self.scope,
                    sha256=sha256,
                    size=size,
                    comment=comment,
                    feed_url=source_url,
                    installed_using=INSTALLED_USING,
                )
                self.index.put_entry(_entry_row(entry))
            except OSError as e:
                self._cleanup_failed_admission(staged, final if renamed else None)
                raise StorageError(f"Failed to add {key} to the {self.scope.value} registry: {e}") from e
            except BaseException:
                self._cleanup_failed_admission(staged, final if renamed else None)
                raise

        _logger.info("Added %s to the %s registry (%d bytes).", key, self.scope.value, size)
        return entry

    def _discard_partials(self, key: CacheKey) -> None:
        """Remove staging files left by an interrupted admission of `key`."""
        pattern = f".{self.artifact_path(key).name}.*.partial"
        for stale in self.package_dir(key).glob(pattern):
            _logger.debug("Removing stale staging file %s", stale)
            try:
                stale.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Failed to remove stale staging file {stale}: {e}") from e

    def _cleanup_failed_admission(self, staged: Optional[Path], admitted: Optional[Path]) -> None:
        for path in (staged, admitted):
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                _logger.error("Could not remove %s after failed admission: %s", path, e)


def _entry_row(entry: CacheEntry) -> Dict[str, Any]:
    return {
        "group_name": entry.key.group or "",
        "name": entry.key.name,
        "version": str(entry.key.version),
        "artifact_path": str(entry.artifact_path),
        "sha256": entry.sha256,
        "size": entry.size,
        "feed_url": entry.feed_url,
        "installed_by": entry.installed_by,
        "installed_using": entry.installed_using,
        "comment": entry.comment,
        "installed_at": entry.installed_at,
    }
