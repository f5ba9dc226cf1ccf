"""Exception hierarchy for the mirror service.

Image-layer errors (:class:`CacheError` and subclasses) are absorbed close to
where they happen and degrade to the remote image URL. Collection and
persistence errors propagate to the caller unchanged.
"""

from __future__ import annotations

__all__ = [
    "ShelfMirrorError",
    "UpstreamError",
    "CacheError",
    "DownloadError",
    "CacheCorruption",
    "PersistenceError",
]


class ShelfMirrorError(RuntimeError):
    """Base exception for mirror failures."""


class UpstreamError(ShelfMirrorError):
    """Raised when an upstream collection or subject request fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CacheError(ShelfMirrorError):
    """Base class for image cache failures."""


class DownloadError(CacheError):
    """Raised when an image could not be fetched and stored."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to cache {url}: {reason}")
        self.url = url
        self.reason = reason


class CacheCorruption(CacheError):
    """Raised when a cache entry exists but is empty or unreadable."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Cache entry {key} is invalid: {reason}")
        self.key = key
        self.reason = reason


class PersistenceError(ShelfMirrorError):
    """Raised when a snapshot cannot be read from or written to storage."""
