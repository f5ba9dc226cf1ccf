"""Bounded-concurrency driver applying the image cache to many references."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Literal

from ..config import Settings
from ..models import ImageRef
from .image_cache import ImageCache

logger = logging.getLogger(__name__)

BatchMode = Literal["populate", "validate"]


class BatchFetcher:
    """Run cache operations over a set of image references in fixed groups.

    Each group of at most ``concurrency`` references runs in parallel and the
    next group only starts once the previous one has fully completed. A
    failure for one reference never aborts the batch; it resolves to the
    degraded reference instead.
    """

    def __init__(
        self,
        cache: ImageCache,
        *,
        concurrency: int = 5,
        pause_every: int = 5,
        pause_seconds: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._cache = cache
        self._concurrency = concurrency
        self._pause_every = pause_every
        self._pause_seconds = pause_seconds

    @classmethod
    def from_settings(cls, cache: ImageCache, settings: Settings) -> "BatchFetcher":
        return cls(
            cache,
            concurrency=settings.batch_concurrency,
            pause_every=settings.validate_pause_every,
            pause_seconds=settings.validate_pause_seconds,
        )

    async def run(
        self,
        refs: Iterable[ImageRef],
        mode: BatchMode = "populate",
        *,
        concurrency: int | None = None,
    ) -> dict[str, ImageRef]:
        """Resolve every reference and return a mapping keyed by source URL.

        References without a source are keyed by their local identifier;
        references with neither are skipped.
        """

        group_size = concurrency or self._concurrency
        if group_size < 1:
            raise ValueError("concurrency must be at least 1")

        pending: dict[str, ImageRef] = {}
        for ref in refs:
            lookup = ref.source or ref.local
            if lookup and lookup not in pending:
                pending[lookup] = ref

        keys = list(pending)
        results: dict[str, ImageRef] = {}
        if not keys:
            return results

        logger.info(
            "Running %s image batch over %s reference(s) in groups of %s",
            mode,
            len(keys),
            group_size,
        )
        completed = 0
        pauses = 0
        for index in range(0, len(keys), group_size):
            group = keys[index : index + group_size]
            resolved = await asyncio.gather(
                *(self._resolve(pending[key], mode) for key in group)
            )
            results.update(zip(group, resolved))
            completed += len(group)

            if mode == "validate" and self._pause_every > 0 and completed < len(keys):
                due = completed // self._pause_every
                if due > pauses:
                    pauses = due
                    await self._pause()

        cached = sum(1 for ref in results.values() if ref.is_cached)
        logger.info(
            "Finished %s image batch: %s of %s cached locally",
            mode,
            cached,
            len(results),
        )
        return results

    async def _resolve(self, ref: ImageRef, mode: BatchMode) -> ImageRef:
        if mode == "validate":
            return await self._cache.revalidate(ref)
        return await self._cache.materialize(ref)

    async def _pause(self) -> None:
        if self._pause_seconds > 0:
            await asyncio.sleep(self._pause_seconds)
