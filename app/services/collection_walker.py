"""Pagination over a single upstream (kind, status) collection."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Callable

from .douban import DoubanClient, InterestPage

logger = logging.getLogger(__name__)

PageCallback = Callable[[InterestPage], None]


class CollectionWalker:
    """Fetch a collection page by page until the upstream data runs out."""

    def __init__(self, client: DoubanClient, *, page_size: int = 50):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._client = client
        self._page_size = page_size

    async def walk(
        self,
        uid: str,
        kind: str,
        status: str,
        *,
        page_size: int | None = None,
        on_page: PageCallback | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every raw record of the collection in page order.

        Offsets start at zero and advance by ``page_size``. The walk ends when
        the offset reaches the reported total or when a page comes back short,
        whichever happens first; a short page wins even if the reported total
        claims otherwise. Upstream failures propagate as ``UpstreamError``.
        """

        size = page_size or self._page_size
        start = 0
        pages = 0
        yielded = 0
        while True:
            page = await self._client.fetch_interests(
                uid, kind, status, start=start, count=size
            )
            pages += 1
            if on_page is not None:
                on_page(page)

            for record in page.records:
                yielded += 1
                yield record

            start += size
            if page.received < size:
                break
            if page.total is not None and start >= page.total:
                break

        logger.info(
            "Fetched %s %s/%s record(s) for %s in %s page(s)",
            yielded,
            kind,
            status,
            uid,
            pages,
        )
