"""Pytest configuration and shared test helpers."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

import httpx
import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.blob_store import FileBlobStore  # noqa: E402
from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.services.douban import DoubanClient  # noqa: E402
from app.services.image_cache import ImageCache  # noqa: E402
from app.services.reconciler import Reconciler  # noqa: E402
from app.snapshot_store import SnapshotStore  # noqa: E402

API_HOST = "api.example.com"
API_BASE_URL = f"https://{API_HOST}/dbapi"
IMAGE_HOST = "img.example.com"
IMAGE_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-payload"


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(data_dir: Path, **overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {
        "DATA_DIR": str(data_dir),
        "DOUBAN_API_URL": API_BASE_URL,
        "DATABASE_URL": f"sqlite+aiosqlite:///{data_dir / 'mirror.db'}",
        "VALIDATE_PAUSE_SECONDS": 0,
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return build_settings(tmp_path)


@pytest.fixture
def settings_factory(tmp_path: Path):
    def factory(**overrides: Any) -> Settings:
        return build_settings(tmp_path, **overrides)

    return factory


def image_url(name: str, extension: str = ".jpg") -> str:
    slug = name.replace(" ", "-").lower()
    return f"https://{IMAGE_HOST}/view/photo/s_ratio_poster/public/{slug}{extension}"


def make_record(
    title: str,
    *,
    subject_id: str | int | None = None,
    image: str | None = None,
    subtitle: str | None = None,
    genres: list[str] | None = None,
    rating: float | None = None,
    comment: str = "",
    create_time: str = "2024-01-01 00:00:00",
) -> dict[str, Any]:
    """Build a raw interest record shaped like the upstream payload."""

    subject: dict[str, Any] = {
        "id": subject_id if subject_id is not None else title,
        "title": title,
        "pic": {"normal": image if image is not None else image_url(title)},
    }
    if subtitle is not None:
        subject["card_subtitle"] = subtitle
    if genres is not None:
        subject["genres"] = genres
    record: dict[str, Any] = {
        "create_time": create_time,
        "comment": comment,
        "subject": subject,
    }
    if rating is not None:
        record["rating"] = {"value": rating}
    return record


@dataclass
class FakeUpstream:
    """In-memory stand-in for the interests API and the image host."""

    collections: dict[tuple[str, str], list[dict[str, Any]]] = field(default_factory=dict)
    reported_totals: dict[tuple[str, str], int] = field(default_factory=dict)
    subjects: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    images: dict[str, bytes] = field(default_factory=dict)
    failing_collections: set[tuple[str, str]] = field(default_factory=set)
    failing_images: set[str] = field(default_factory=set)
    api_requests: list[httpx.Request] = field(default_factory=list)
    image_requests: list[str] = field(default_factory=list)

    record = staticmethod(make_record)
    image_url = staticmethod(image_url)

    def add(self, kind: str, status: str, *records: dict[str, Any]) -> None:
        """Register records and make their cover images downloadable."""

        self.collections.setdefault((kind, status), []).extend(records)
        for record in records:
            url = record["subject"]["pic"]["normal"]
            if url:
                self.images.setdefault(url, IMAGE_BYTES)

    def interest_requests(self, kind: str | None = None) -> list[httpx.Request]:
        return [
            request
            for request in self.api_requests
            if request.url.path.endswith("/interests")
            and (kind is None or request.url.params.get("type") == kind)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == IMAGE_HOST:
            return self._image(request)
        self.api_requests.append(request)
        path = request.url.path.removeprefix("/dbapi")
        segments = [segment for segment in path.split("/") if segment]
        if len(segments) == 3 and segments[0] == "user" and segments[2] == "interests":
            return self._interests(request)
        if len(segments) == 2:
            subject = self.subjects.get((segments[0], segments[1]))
            if subject is None:
                return httpx.Response(404, json={"msg": "not found"})
            return httpx.Response(200, json=subject)
        return httpx.Response(404, json={"msg": "unknown endpoint"})

    def _interests(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        key = (params["type"], params["status"])
        if key in self.failing_collections:
            return httpx.Response(503, json={"msg": "unavailable"})
        start = int(params.get("start", "0"))
        count = int(params.get("count", "50"))
        records = self.collections.get(key, [])
        total = self.reported_totals.get(key, len(records))
        return httpx.Response(
            200,
            json={"total": total, "interests": records[start : start + count]},
        )

    def _image(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.image_requests.append(url)
        if url in self.failing_images:
            return httpx.Response(500)
        body = self.images.get(url)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body, headers={"content-type": "image/jpeg"})


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@dataclass
class Mirror:
    """Fully wired services sharing one fake upstream."""

    settings: Settings
    database: Database
    store: SnapshotStore
    blob_store: FileBlobStore
    cache: ImageCache
    client: DoubanClient
    reconciler: Reconciler


@pytest.fixture
def mirror_factory(settings: Settings, fake_upstream: FakeUpstream):
    """Return an async context manager building the service graph."""

    @asynccontextmanager
    async def factory(custom: Settings | None = None) -> AsyncIterator[Mirror]:
        active = custom or settings
        transport = httpx.MockTransport(fake_upstream.handler)
        async with httpx.AsyncClient(
            transport=transport, base_url=str(active.douban_api_url)
        ) as api_client, httpx.AsyncClient(transport=transport) as image_client:
            database = Database(active.database_url)
            await database.create_all()
            try:
                store = SnapshotStore(database.session_factory)
                blob_store = FileBlobStore(active.resolved_image_cache_dir)
                cache = ImageCache(active, image_client, blob_store)
                client = DoubanClient(active, api_client)
                reconciler = Reconciler.from_settings(active, client, cache, store)
                yield Mirror(
                    settings=active,
                    database=database,
                    store=store,
                    blob_store=blob_store,
                    cache=cache,
                    client=client,
                    reconciler=reconciler,
                )
            finally:
                await database.dispose()

    return factory
