"""Build, load, validate and remove per-user collection snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..classification import RecordPredicate, classify_kind, subject_tv_predicate
from ..config import Settings
from ..models import (
    COLLECTION_STATUSES,
    UPSTREAM_KINDS,
    Item,
    Snapshot,
    SnapshotItems,
    SubjectDetail,
    SubjectType,
    UpstreamKind,
)
from ..snapshot_store import SnapshotStore
from ..utils import is_remote_url
from .collection_walker import CollectionWalker
from .douban import DoubanClient, InterestPage
from .image_batch import BatchFetcher
from .image_cache import ImageCache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FetchJob:
    """Pages requested for one (uid, kind) during a single reconciliation."""

    uid: str
    kind: UpstreamKind
    tasks: list[tuple[str, int]] = field(default_factory=list)
    pages: list[InterestPage] = field(default_factory=list)

    def record_page(self, page: InterestPage) -> None:
        self.tasks.append((page.status, page.start))
        self.pages.append(page)


class Reconciler:
    """Produce one canonical snapshot per user and keep its images usable."""

    def __init__(
        self,
        walker: CollectionWalker,
        batch: BatchFetcher,
        store: SnapshotStore,
        *,
        is_tv: RecordPredicate,
        client: DoubanClient | None = None,
        cache: ImageCache | None = None,
    ):
        self._walker = walker
        self._batch = batch
        self._store = store
        self._is_tv = is_tv
        self._client = client
        self._cache = cache

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: DoubanClient,
        cache: ImageCache,
        store: SnapshotStore,
    ) -> "Reconciler":
        return cls(
            CollectionWalker(client, page_size=settings.page_size),
            BatchFetcher.from_settings(cache, settings),
            store,
            is_tv=subject_tv_predicate(settings.tv_markers),
            client=client,
            cache=cache,
        )

    async def build_full(self, uid: str) -> Snapshot:
        """Fetch every collection of *uid* and persist a fresh snapshot.

        Nothing is written unless every upstream walk succeeds, so a failed
        build leaves any previous snapshot in place.
        """

        logger.info("Building snapshot for %s from upstream", uid)
        items = SnapshotItems()
        jobs: list[FetchJob] = []
        for kind in UPSTREAM_KINDS:
            job = FetchJob(uid=uid, kind=kind)
            jobs.append(job)
            for status in COLLECTION_STATUSES:
                async for record in self._walker.walk(
                    uid, kind, status, on_page=job.record_page
                ):
                    items.add(
                        Item.from_record(
                            record,
                            kind=classify_kind(kind, record, self._is_tv),
                            status=status,
                        )
                    )

        refs = [item.image for item in items.iter_items() if is_remote_url(item.image.source)]
        resolved = await self._batch.run(refs, "populate")
        items.apply_images(resolved)

        snapshot = Snapshot.assemble(uid, items)
        await self._store.replace(
            uid, snapshot, [page for job in jobs for page in job.pages]
        )
        logger.info(
            "Snapshot for %s: %s movie(s), %s TV show(s), %s book(s) from %s page(s)",
            uid,
            snapshot.stats.movies,
            snapshot.stats.tv_shows,
            snapshot.stats.books,
            sum(len(job.tasks) for job in jobs),
        )
        return snapshot

    async def load_or_build(self, uid: str, *, validate_images: bool = False) -> Snapshot:
        """Return the stored snapshot, building it when none exists."""

        snapshot = await self._store.load(uid)
        if snapshot is None:
            logger.info("No stored snapshot for %s, building from upstream", uid)
            return await self.build_full(uid)

        logger.info("Loaded stored snapshot for %s", uid)
        if validate_images:
            await self.validate_images(snapshot)
        return snapshot

    async def validate_images(self, snapshot: Snapshot) -> int:
        """Repair every image reference of *snapshot*; persist if any changed."""

        resolved = await self._batch.run(snapshot.items.image_refs(), "validate")
        changed = snapshot.items.apply_images(resolved)
        if changed:
            logger.info(
                "Updated %s image reference(s) for %s, saving snapshot",
                changed,
                snapshot.uid,
            )
            await self._store.save(snapshot.uid, snapshot)
        return changed

    async def remove(self, uid: str) -> bool:
        """Delete the snapshot and page artifacts of *uid*."""

        return await self._store.delete_all(uid)

    async def list_users(self) -> list[str]:
        return await self._store.list_uids()

    async def item_detail(self, subject_type: SubjectType, subject_id: str) -> SubjectDetail:
        """Fetch one subject and cache its cover image."""

        if self._client is None or self._cache is None:
            raise RuntimeError("Subject lookups require an upstream client and cache")
        detail = await self._client.fetch_subject(subject_type, subject_id)
        detail.image = await self._cache.materialize(detail.image)
        return detail
