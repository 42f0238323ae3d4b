from typing import Optional


class UpackError(Exception):
    """Base class for all install failures."""


class NotFoundError(UpackError):
    """Raised when the feed has no such package or no matching version."""


class TransportError(UpackError):
    """Raised on network or HTTP failure talking to the feed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StorageError(UpackError):
    """Raised when the registry cache cannot be written."""


class RegistryLockError(StorageError):
    """Raised when a registry key lock cannot be acquired in time."""


class PathTraversalError(UpackError):
    """Raised when an archive entry would land outside the target directory."""


class ExtractionError(UpackError):
    """Raised when an archive entry cannot be written."""


class InvalidVersionError(ValueError):
    """Raised for malformed version strings."""
