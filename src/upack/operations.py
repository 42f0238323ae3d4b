from __future__ import annotations

from typing import IO, List, Optional

from .config import Config
from .downloader import Downloader
from .extractor import extract
from .logger import setup_logger
from .package import CacheEntry, InstallRequest, RegistryScope
from .registry import Registry, current_user
from .resolver import resolve_version

_logger = setup_logger()

# module-level singletons (initialized by init(cfg))
_cfg: Optional[Config] = None
downloader: Optional[Downloader] = None


# -------------------------
# Initialization
# -------------------------
def init(config: Config) -> None:
    """Initialize singleton instances from config."""
    global _cfg, downloader
    _cfg = config
    downloader = Downloader(_cfg)
    _logger.debug(
        "operations initialized (user registry=%s, machine registry=%s)",
        _cfg.user_registry,
        _cfg.machine_registry,
    )


def _ensure_initialized() -> None:
    if not all((_cfg, downloader)):
        raise RuntimeError("operations not initialized; call operations.init(config) first")


def open_registry(scope: RegistryScope) -> Registry:
    _ensure_initialized()
    return Registry.for_scope(scope, _cfg, downloader)


# -------------------------
# Install
# -------------------------
def install(request: InstallRequest) -> None:
    """
    Resolve -> open artifact (registry cache, or straight download when
    `skip_registry`) -> extract. Any failure propagates; nothing is retried.
    """
    _ensure_initialized()

    version = resolve_version(
        downloader,
        request.source_url,
        request.identifier,
        request.version_spec,
        request.credentials,
        request.prerelease,
    )
    _logger.info("Installing %s %s to %s", request.identifier, version, request.target_directory)

    with _open_artifact(request, version) as stream:
        extract(stream, request.target_directory, overwrite=request.overwrite)

    _logger.info("Installed %s %s.", request.identifier, version)


def _open_artifact(request: InstallRequest, version) -> IO[bytes]:
    if request.skip_registry:
        return downloader.open_package(request.source_url, request.identifier, version, request.credentials)

    registry = open_registry(request.scope)
    try:
        return registry.get_or_download_package(
            request.identifier,
            version,
            request.source_url,
            request.credentials,
            comment=request.comment,
            installed_by=current_user(),
        )
    finally:
        registry.close()


# -------------------------
# Registry queries
# -------------------------
def list_installed(scope: RegistryScope) -> List[CacheEntry]:
    registry = open_registry(scope)
    try:
        return registry.list_entries()
    finally:
        registry.close()
