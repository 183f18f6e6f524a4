"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class ZembilError(Exception):
    """Base exception for all application-specific errors."""


class NotFoundError(ZembilError):
    """Raised when a package, version or queue item does not exist."""


class UnsupportedManagerError(NotFoundError):
    """Raised when no package source is registered for a package manager."""


class DuplicateError(ZembilError):
    """Raised when a package is already pending or downloading in the queue."""


class StorageError(ZembilError):
    """Raised for filesystem or database I/O failures in the cache."""


class UpstreamError(ZembilError):
    """Raised when a registry request fails for network or protocol reasons."""


class ConfigurationError(ZembilError):
    """Raised for issues related to configuration loading or validation."""
