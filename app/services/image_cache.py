"""Content-addressed cache for remote cover images.

Each source URL maps to a stable key (MD5 of the URL plus an image extension),
and the bytes live in a :class:`~app.blob_store.FileBlobStore` under that key.
An entry is usable only when it exists with a non-zero size; anything else is
discarded and downloaded again on the next access.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable
from urllib.parse import urlsplit

import httpx

from ..blob_store import FileBlobStore
from ..config import Settings
from ..errors import CacheCorruption, DownloadError
from ..models import ImageRef
from ..utils import format_megabytes, is_remote_url

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})
DEFAULT_EXTENSION = ".jpg"
CACHE_POLICY = "never expires; entries are kept until removed explicitly"


def cache_key(url: str) -> str:
    """Return the content-addressed cache key for *url*.

    Raises ``ValueError`` for anything that is not an absolute http(s) URL.
    """

    if not is_remote_url(url):
        raise ValueError(f"Not an absolute http(s) URL: {url!r}")
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()
    return f"{digest}{extension_of(url)}"


def extension_of(url: str) -> str:
    """Infer an allowed image extension from the URL path."""

    suffix = posixpath.splitext(urlsplit(url).path)[1].lower()
    if suffix in IMAGE_EXTENSIONS:
        return suffix
    return DEFAULT_EXTENSION


@dataclass(slots=True)
class CacheStats:
    """Aggregate view of the cache directory."""

    file_count: int
    total_size: int
    cache_dir: Path
    cache_policy: str = CACHE_POLICY

    def to_payload(self) -> dict[str, object]:
        return {
            "fileCount": self.file_count,
            "totalSize": self.total_size,
            "totalSizeMB": format_megabytes(self.total_size),
            "cacheDir": str(self.cache_dir),
            "cachePolicy": self.cache_policy,
        }


@dataclass(slots=True)
class CacheEntryInfo:
    """Details about one cached file."""

    file_name: str
    size: int
    created_at: datetime
    modified_at: datetime
    is_valid: bool

    def to_payload(self) -> dict[str, object]:
        return {
            "fileName": self.file_name,
            "size": self.size,
            "sizeMB": format_megabytes(self.size),
            "createdAt": self.created_at.isoformat(),
            "modifiedAt": self.modified_at.isoformat(),
            "isValid": self.is_valid,
        }


class ImageCache:
    """Download, verify and repair locally cached cover images."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        blob_store: FileBlobStore,
    ):
        self._settings = settings
        self._client = http_client
        self._store = blob_store
        self._prefix = settings.image_url_prefix
        self._timeout = httpx.Timeout(settings.image_timeout_seconds)

    @property
    def blob_store(self) -> FileBlobStore:
        return self._store

    def key_of(self, url: str) -> str:
        return cache_key(url)

    def local_ref(self, key: str) -> str:
        return f"{self._prefix}/{key}"

    def key_from_ref(self, ref: str | None) -> str | None:
        """Return the cache key encoded in a local reference, if it is one."""

        if not ref or not ref.startswith(f"{self._prefix}/"):
            return None
        key = ref[len(self._prefix) + 1 :]
        if not key or "/" in key:
            return None
        return key

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._settings.image_user_agent,
            "Referer": self._settings.image_referer,
        }

    def _check_entry(self, key: str) -> bool:
        """Return ``True`` for a valid entry and ``False`` when absent.

        Raises :class:`CacheCorruption` when the entry exists but is empty or
        cannot be inspected.
        """

        try:
            size = self._store.size_of(key)
        except OSError as exc:
            raise CacheCorruption(key, f"stat failed: {exc}") from exc
        if size is None:
            return False
        if size <= 0:
            raise CacheCorruption(key, "zero-length file")
        return True

    def _discard(self, key: str) -> None:
        try:
            self._store.delete(key)
        except OSError as exc:
            logger.warning("Failed to delete cache entry %s: %s", key, exc)

    def is_valid(self, key: str) -> bool:
        try:
            return self._check_entry(key)
        except CacheCorruption:
            return False

    async def ensure(self, url: str) -> str:
        """Return the local reference for *url*, downloading it if needed.

        A valid entry is returned without touching the network. Raises
        :class:`DownloadError` when the image cannot be fetched and stored.
        """

        key = self.key_of(url)
        try:
            if self._check_entry(key):
                logger.debug("Image already cached: %s", key)
                return self.local_ref(key)
        except CacheCorruption as exc:
            logger.info("Discarding corrupt cache entry, downloading again: %s", exc)
            self._discard(key)

        body = await self._download(url)

        try:
            self._store.put(key, body)
            if not self._check_entry(key):
                raise CacheCorruption(key, "missing after write")
        except (OSError, CacheCorruption) as exc:
            self._discard(key)
            logger.warning("Failed to store image %s as %s: %s", url, key, exc)
            raise DownloadError(url, f"write failed: {exc}") from exc

        logger.info("Cached image %s (%.2f KB)", key, len(body) / 1024)
        return self.local_ref(key)

    async def _download(self, url: str) -> bytes:
        logger.debug("Downloading image %s", url)
        try:
            response = await self._client.get(
                url,
                headers=self._headers(),
                timeout=self._timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Timed out downloading image %s", url)
            raise DownloadError(url, "timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Failed to download image %s: %s", url, exc)
            raise DownloadError(url, exc.__class__.__name__) from exc

        if not response.is_success:
            logger.warning(
                "Image download for %s returned HTTP %s", url, response.status_code
            )
            raise DownloadError(url, f"HTTP {response.status_code}")
        body = response.content
        if not body:
            logger.warning("Image download for %s returned an empty body", url)
            raise DownloadError(url, "empty body")
        return body

    async def repair(self, local_ref: str | None, source_url: str | None) -> str | None:
        """Re-validate a previously returned reference, re-caching if needed.

        Without a source URL an invalid cache reference cannot be repaired: a
        corrupt blob under its key is still deleted, and the reference is
        returned unchanged.
        """

        key = self.key_from_ref(local_ref)
        if key is not None:
            try:
                if self._check_entry(key):
                    return local_ref
            except CacheCorruption as exc:
                logger.info("Cache entry needs repair: %s", exc)
                self._discard(key)
            if not source_url:
                logger.warning("No source URL recorded, cannot repair %s", local_ref)
                return local_ref
            logger.info("Re-caching %s from %s", key, source_url)
            return await self.ensure(source_url)

        candidate = source_url or local_ref
        if candidate and is_remote_url(candidate):
            return await self.ensure(candidate)
        return local_ref

    async def materialize(self, ref: ImageRef) -> ImageRef:
        """Cache ``ref.source`` and return the resolved or degraded reference."""

        if not is_remote_url(ref.source):
            return ref.with_local(None)
        try:
            local = await self.ensure(ref.source)
        except DownloadError as exc:
            logger.info("Using remote image after cache failure: %s", exc)
            return ref.with_local(None)
        return ref.with_local(local)

    async def revalidate(self, ref: ImageRef) -> ImageRef:
        """Repair ``ref`` in place of :meth:`materialize` for known references."""

        try:
            local = await self.repair(ref.local, ref.source or None)
        except DownloadError as exc:
            logger.info("Using remote image after repair failure: %s", exc)
            return ref.with_local(None)
        if local and self.key_from_ref(local) is None:
            # A remote URL came back; the entry is still uncached.
            return ref.with_local(None)
        return ref.with_local(local)

    def stats(self) -> CacheStats:
        entries = self._store.entries()
        return CacheStats(
            file_count=len(entries),
            total_size=sum(entry.size for entry in entries),
            cache_dir=self._store.root,
        )

    def list_entries(self) -> list[CacheEntryInfo]:
        """Return every cached file, most recently modified first."""

        entries = [
            CacheEntryInfo(
                file_name=info.key,
                size=info.size,
                created_at=info.created_at,
                modified_at=info.modified_at,
                is_valid=info.is_valid,
            )
            for info in self._store.entries()
        ]
        entries.sort(key=lambda entry: entry.modified_at, reverse=True)
        return entries

    def clean(
        self,
        *,
        names: Iterable[str] | None = None,
        older_than: timedelta | None = None,
    ) -> list[str]:
        """Delete cache files by name and/or by age.

        Nothing is removed when neither selector is given.
        """

        removed: list[str] = []
        if names:
            removed.extend(self._store.purge(names))
        if older_than is not None:
            removed.extend(self._store.purge_older_than(older_than))
        if not names and older_than is None:
            logger.info("Cache clean requested without selectors; nothing removed")
        return removed
