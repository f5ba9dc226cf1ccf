from __future__ import annotations

import asyncio

import pytest

from app.models import ImageRef
from app.services.image_batch import BatchFetcher


class RecordingCache:
    """Stand-in cache tracking how many operations run at once."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.in_flight = 0
        self.peak = 0
        self.calls: list[tuple[str, str]] = []

    async def _run(self, mode: str, ref: ImageRef) -> ImageRef:
        self.calls.append((mode, ref.source))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        if ref.source in self.failing:
            return ref.with_local(None)
        return ref.with_local(f"/cache/images/{ref.source.rsplit('/', 1)[-1]}")

    async def materialize(self, ref: ImageRef) -> ImageRef:
        return await self._run("populate", ref)

    async def revalidate(self, ref: ImageRef) -> ImageRef:
        return await self._run("validate", ref)


class CountingFetcher(BatchFetcher):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.pauses: list[int] = []

    async def _pause(self) -> None:
        self.pauses.append(len(self._cache.calls))  # type: ignore[attr-defined]


def _refs(count: int) -> list[ImageRef]:
    return [ImageRef(source=f"https://img.example.com/{index}.jpg") for index in range(count)]


@pytest.mark.anyio("asyncio")
async def test_groups_never_exceed_concurrency() -> None:
    cache = RecordingCache()
    fetcher = BatchFetcher(cache, concurrency=3)  # type: ignore[arg-type]

    results = await fetcher.run(_refs(10))

    assert cache.peak == 3
    assert len(results) == 10
    assert all(ref.is_cached for ref in results.values())


@pytest.mark.anyio("asyncio")
async def test_failures_degrade_without_aborting_batch() -> None:
    refs = _refs(4)
    cache = RecordingCache(failing={refs[1].source})
    fetcher = BatchFetcher(cache, concurrency=2)  # type: ignore[arg-type]

    results = await fetcher.run(refs)

    assert results[refs[1].source] == ImageRef(source=refs[1].source)
    assert results[refs[1].source].href == refs[1].source
    assert sum(ref.is_cached for ref in results.values()) == 3


@pytest.mark.anyio("asyncio")
async def test_duplicate_sources_are_resolved_once() -> None:
    refs = _refs(2)
    cache = RecordingCache()
    fetcher = BatchFetcher(cache)  # type: ignore[arg-type]

    results = await fetcher.run([refs[0], refs[1], refs[0], ImageRef(source="")])

    assert list(results) == [refs[0].source, refs[1].source]
    assert len(cache.calls) == 2


@pytest.mark.anyio("asyncio")
async def test_validate_mode_pauses_between_groups() -> None:
    cache = RecordingCache()
    fetcher = CountingFetcher(cache, concurrency=5, pause_every=5)  # type: ignore[arg-type]

    await fetcher.run(_refs(12), "validate")

    assert {mode for mode, _ in cache.calls} == {"validate"}
    # No pause after the final group.
    assert fetcher.pauses == [5, 10]


@pytest.mark.anyio("asyncio")
async def test_populate_mode_does_not_pause() -> None:
    cache = RecordingCache()
    fetcher = CountingFetcher(cache, concurrency=2, pause_every=2)  # type: ignore[arg-type]

    await fetcher.run(_refs(6), "populate")

    assert fetcher.pauses == []
    assert {mode for mode, _ in cache.calls} == {"populate"}


@pytest.mark.anyio("asyncio")
async def test_concurrency_override_applies_per_run() -> None:
    cache = RecordingCache()
    fetcher = BatchFetcher(cache, concurrency=5)  # type: ignore[arg-type]

    await fetcher.run(_refs(4), concurrency=1)

    assert cache.peak == 1


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BatchFetcher(RecordingCache(), concurrency=0)  # type: ignore[arg-type]
