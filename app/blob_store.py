"""Filesystem-backed blob store holding cached image bytes."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable
from uuid import uuid4

logger = logging.getLogger(__name__)

_TEMP_PREFIX = "."


@dataclass(slots=True)
class BlobInfo:
    """Filesystem metadata for one stored blob."""

    key: str
    size: int
    created_at: datetime
    modified_at: datetime

    @property
    def is_valid(self) -> bool:
        return self.size > 0


class FileBlobStore:
    """Store opaque blobs as flat files under a single root directory.

    Writes go to a hidden temporary file first and are renamed into place, so
    readers never observe a partially written blob under its final key.
    """

    def __init__(self, root: Path):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        """Return the on-disk path for *key*, rejecting unsafe names."""

        if (
            not key
            or key.startswith(_TEMP_PREFIX)
            or "/" in key
            or "\\" in key
            or key in {".", ".."}
        ):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self._root / key

    def put(self, key: str, data: bytes) -> int:
        """Atomically write *data* under *key* and return the stored size."""

        target = self.path_for(key)
        self._root.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f"{_TEMP_PREFIX}{key}.tmp.{uuid4().hex}")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return target.stat().st_size

    def get(self, key: str) -> bytes | None:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def delete(self, key: str) -> bool:
        """Remove *key*; return ``True`` when something was deleted."""

        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def size_of(self, key: str) -> int | None:
        """Return the stored size of *key*, or ``None`` when absent."""

        try:
            return self.path_for(key).stat().st_size
        except FileNotFoundError:
            return None

    def list_keys(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            path.name
            for path in self._root.iterdir()
            if path.is_file() and not path.name.startswith(_TEMP_PREFIX)
        )

    def stat(self, key: str) -> BlobInfo | None:
        try:
            info = self.path_for(key).stat()
        except FileNotFoundError:
            return None
        # st_birthtime is not available everywhere; ctime is the closest fallback.
        created = getattr(info, "st_birthtime", info.st_ctime)
        return BlobInfo(
            key=key,
            size=info.st_size,
            created_at=datetime.fromtimestamp(created, tz=timezone.utc),
            modified_at=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
        )

    def entries(self) -> list[BlobInfo]:
        """Return metadata for every blob, skipping ones deleted mid-scan."""

        entries: list[BlobInfo] = []
        for key in self.list_keys():
            info = self.stat(key)
            if info is not None:
                entries.append(info)
        return entries

    def purge(self, keys: Iterable[str]) -> list[str]:
        """Delete the named blobs and return the keys actually removed."""

        removed: list[str] = []
        for key in keys:
            try:
                deleted = self.delete(key)
            except ValueError:
                logger.warning("Ignoring invalid blob key in purge request: %r", key)
                continue
            if deleted:
                removed.append(key)
        if removed:
            logger.info("Purged %s blob(s) by name from %s", len(removed), self._root)
        return removed

    def purge_older_than(
        self, max_age: timedelta, *, now: datetime | None = None
    ) -> list[str]:
        """Delete blobs whose modification time is older than *max_age*."""

        reference = now or datetime.now(timezone.utc)
        cutoff = reference - max_age
        stale = [info.key for info in self.entries() if info.modified_at < cutoff]
        removed = [key for key in stale if self.delete(key)]
        if removed:
            logger.info(
                "Purged %s blob(s) older than %s from %s",
                len(removed),
                max_age,
                self._root,
            )
        return removed
