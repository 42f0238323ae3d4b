"""
upack - Universal package installer with a shared local registry cache.

Installs a versioned package from a upack feed into a directory, keeping
downloaded artifacts in a per-user or machine-wide registry so repeated
installs of the same version are served locally.

Modules:
- cli: Command-line interface entry point.
- operations: Install orchestration.
- resolver: Version resolution against the feed.
- downloader: Feed HTTP access and artifact download.
- registry: Local registry cache with locked, atomic admission.
- registry_index: SQLite metadata index of a registry.
- extractor: Package archive extraction.
- config: Configuration management.
"""

__version__ = "1.0.0"

from .cli import main

__all__ = ["main", "__version__"]
